from __future__ import annotations
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import ORJSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import (
    Principal, SESSION_COOKIE, current_user, get_db, session_token, sessions,
)
from ..infra.timings import timeit
from ..model.accounts import (
    authenticate, load_user, register_user, reset_password, user_to_dict,
)
from ..model.authsession import SESSION_TTL_SECONDS, SessionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", status_code=201)
async def register(payload: dict, db: AsyncSession = Depends(get_db)):
    async with timeit("auth.register"):
        user = await register_user(db, payload)
    return {
        "success": True,
        "message": "User registered successfully",
        "user": user_to_dict(user),
    }


@router.post("/login")
async def login(
    payload: dict,
    db: AsyncSession = Depends(get_db),
    store: SessionStore = Depends(sessions),
):
    async with timeit("auth.login"):
        user = await authenticate(
            db,
            email=payload.get("email"),
            phone=payload.get("phone"),
            password=payload.get("password"),
        )
        token = await store.create_session(user.id, user.role)
    logger.info("login user id=%s role=%s", user.id, user.role)

    resp = ORJSONResponse({
        "success": True,
        "message": "Login successful",
        "user": user_to_dict(user),
        "session": {
            "id": token,
            "session_id": token,
            "auth_header": f"Session {token}",
        },
    })
    resp.set_cookie(
        SESSION_COOKIE, token,
        max_age=SESSION_TTL_SECONDS,
        httponly=True,
        samesite="lax",
        path="/",
    )
    return resp


@router.post("/logout")
async def logout(
    request: Request, store: SessionStore = Depends(sessions)
):
    token = session_token(request)
    if token:
        await store.delete_session(token)
    resp = ORJSONResponse({"success": True, "message": "Logged out"})
    resp.delete_cookie(SESSION_COOKIE, path="/")
    return resp


@router.post("/forgot")
async def forgot(
    payload: dict,
    db: AsyncSession = Depends(get_db),
    store: SessionStore = Depends(sessions),
):
    user = await reset_password(
        db, payload.get("phone"), payload.get("newPassword")
    )
    revoked = await store.delete_user_sessions(user.id)
    logger.info("password reset for user id=%s, %d sessions revoked",
                user.id, revoked)
    return {"success": True, "message": "Password updated successfully"}


@router.get("/me")
async def me(
    user: Principal = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    row = await load_user(db, user.user_id)
    if row is None:
        raise HTTPException(404, detail="User not found")
    return {"success": True, "user": user_to_dict(row)}
