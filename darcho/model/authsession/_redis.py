from __future__ import annotations
import secrets
from typing import Optional, Dict, Any
import redis.asyncio as redis

from ...helpers import now_ts


# ---- keys
def k_sess(token: str) -> str: return f"sess:{token}"
def k_user(user_id: int) -> str: return f"user_sessions:{user_id}"


class SessionStore:
    def __init__(self, *, r: redis.Redis, ttl_seconds: int) -> None:
        self.r = r
        self.ttl = ttl_seconds

    async def create_session(self, user_id: int, role: str) -> str:
        token = secrets.token_hex(32)
        created = now_ts()
        # mapping values should be strings for decode_responses=True
        pipe = self.r.pipeline(transaction=True)
        pipe.hset(k_sess(token), mapping={
            "user_id": str(user_id),
            "role": role,
            "created_at": str(created),
            "expires_at": str(created + self.ttl),
        })
        pipe.expire(k_sess(token), self.ttl)
        pipe.sadd(k_user(user_id), token)
        pipe.expire(k_user(user_id), self.ttl)
        await pipe.execute()
        return token

    async def get_session(self, token: str) -> Optional[Dict[str, Any]]:
        if not token:
            return None
        h = await self.r.hgetall(k_sess(token))
        if not h:
            return None
        return {
            "token": token,
            "user_id": int(h["user_id"]),
            "role": h.get("role", ""),
            "created_at": float(h.get("created_at", "0")),
            "expires_at": float(h.get("expires_at", "0")),
        }

    async def delete_session(self, token: str) -> None:
        h = await self.r.hgetall(k_sess(token))
        pipe = self.r.pipeline(transaction=True)
        pipe.delete(k_sess(token))
        if h and "user_id" in h:
            pipe.srem(k_user(int(h["user_id"])), token)
        await pipe.execute()

    async def delete_user_sessions(self, user_id: int) -> int:
        tokens = await self.r.smembers(k_user(user_id))
        pipe = self.r.pipeline(transaction=True)
        for token in tokens:
            pipe.delete(k_sess(token))
        pipe.delete(k_user(user_id))
        await pipe.execute()
        return len(tokens)

    async def purge_expired(self) -> int:
        # redis expires session hashes on its own
        return 0
