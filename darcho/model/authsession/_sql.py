from __future__ import annotations
import secrets
from typing import Optional, Dict, Any

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import AuthSession
from ...helpers import now_ts


class SessionStore:
    """Login sessions kept in the auth_sessions table."""

    def __init__(self, *, db: AsyncSession, ttl_seconds: int) -> None:
        self.db = db
        self.ttl = ttl_seconds

    async def create_session(self, user_id: int, role: str) -> str:
        token = secrets.token_hex(32)
        created = now_ts()
        self.db.add(AuthSession(
            token=token,
            user_id=user_id,
            role=role,
            created_at=created,
            expires_at=created + self.ttl,
        ))
        await self.db.commit()
        return token

    async def get_session(self, token: str) -> Optional[Dict[str, Any]]:
        if not token:
            return None
        row = await self.db.get(AuthSession, token)
        if row is None:
            return None
        if row.expires_at <= now_ts():
            await self.db.delete(row)
            await self.db.commit()
            return None
        return {
            "token": row.token,
            "user_id": row.user_id,
            "role": row.role,
            "created_at": row.created_at,
            "expires_at": row.expires_at,
        }

    async def delete_session(self, token: str) -> None:
        await self.db.execute(
            delete(AuthSession).where(AuthSession.token == token)
        )
        await self.db.commit()

    async def delete_user_sessions(self, user_id: int) -> int:
        res = await self.db.execute(
            delete(AuthSession).where(AuthSession.user_id == user_id)
        )
        await self.db.commit()
        return res.rowcount or 0

    async def purge_expired(self) -> int:
        res = await self.db.execute(
            delete(AuthSession).where(AuthSession.expires_at <= now_ts())
        )
        await self.db.commit()
        return res.rowcount or 0

