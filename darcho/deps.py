from __future__ import annotations
import os
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from .infra.sql import make_async_engine
from .model.accounts import load_user
from .model.authsession import (
    SessionStore, new_store, BACKEND as SESSION_BACKEND,
)
from .model.db import ROLE_BUYER, ROLE_FARMER

# ----------------------------
# Config & Constants
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./darcho.db")
SESSION_SECRET = os.environ.get("SESSION_SECRET", "dev-secret-change-me")
ADMIN_USERNAME = os.environ.get("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "supasecret")
SESSION_COOKIE = "session_id"

engine, SessionAsync = make_async_engine(DATABASE_URL)


async def get_db() -> AsyncIterator[AsyncSession]:
    async with SessionAsync() as session:
        yield session


async def sessions(
    request: Request, db: AsyncSession = Depends(get_db)
) -> SessionStore:
    if SESSION_BACKEND == "redis":
        return new_store(r=request.app.state.redis)
    return new_store(db=db)


@dataclass(frozen=True)
class Principal:
    """The logged-in user, detached from any db session."""
    user_id: int
    role: str
    full_name: str
    email: Optional[str]
    phone: str
    farmer_id: Optional[int] = None
    buyer_id: Optional[int] = None
    token: Optional[str] = None


def session_token(request: Request) -> Optional[str]:
    # an explicit header wins over the browser cookie
    auth = request.headers.get("authorization") or ""
    scheme, _, value = auth.partition(" ")
    if scheme.lower() in ("session", "bearer") and value.strip():
        return value.strip()
    return request.cookies.get(SESSION_COOKIE) or None


async def current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
    store: SessionStore = Depends(sessions),
) -> Principal:
    token = session_token(request)
    if not token:
        raise HTTPException(401, detail="Not authenticated")
    sess = await store.get_session(token)
    if sess is None:
        raise HTTPException(401, detail="Session expired or invalid")
    user = await load_user(db, int(sess["user_id"]))
    if user is None:
        await store.delete_session(token)
        raise HTTPException(401, detail="Session expired or invalid")
    return Principal(
        user_id=user.id,
        role=user.role,
        full_name=user.full_name,
        email=user.email,
        phone=user.phone,
        farmer_id=user.farmer.id if user.farmer is not None else None,
        buyer_id=user.buyer.id if user.buyer is not None else None,
        token=token,
    )


async def require_farmer(user: Principal = Depends(current_user)) -> Principal:
    if user.role != ROLE_FARMER or user.farmer_id is None:
        raise HTTPException(
            403, detail="Access denied. Farmer account required."
        )
    return user


async def require_buyer(user: Principal = Depends(current_user)) -> Principal:
    if user.role != ROLE_BUYER or user.buyer_id is None:
        raise HTTPException(
            403, detail="Access denied. Buyer account required."
        )
    return user


# ----------------------------
# Admin (browser session, see SessionMiddleware)
# ----------------------------
def is_admin(request: Request) -> bool:
    return bool(request.session.get("admin_user"))


def require_admin(request: Request) -> None:
    if not is_admin(request):
        raise HTTPException(401, detail="Admin login required")
