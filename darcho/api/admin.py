from __future__ import annotations
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_db, require_admin
from ..helpers import page_params
from ..infra import timings
from ..model import stats
from ..model.accounts import user_to_dict
from ..model.catalog import WITH_FARMER, product_to_dict
from ..model.db import Product, User
from ..model.orders import order_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)]
)


@router.get("/stats")
async def admin_stats(db: AsyncSession = Depends(get_db)):
    return {"success": True, "data": await stats.admin_stats(db)}


@router.get("/users")
async def admin_users(
    role: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
):
    page, limit, offset = page_params(page, limit, max_limit=500)
    rows, total = await stats.admin_users(
        db, role=role, offset=offset, limit=limit
    )
    return {
        "success": True,
        "items": [user_to_dict(u) for u in rows],
        "total": total,
        "limit": limit,
    }


@router.patch("/users/{user_id}")
async def admin_update_user(
    user_id: int, payload: dict, db: AsyncSession = Depends(get_db)
):
    verified = payload.get("isVerified")
    if not isinstance(verified, bool):
        raise HTTPException(400, detail="isVerified must be true or false")
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(404, detail="User not found")
    user.is_verified = verified
    await db.commit()
    logger.info("admin set is_verified=%s on user id=%s", verified, user_id)
    return {"success": True, "user": user_to_dict(user)}


@router.get("/products")
async def admin_products(limit: int = 200, db: AsyncSession = Depends(get_db)):
    _, limit, _ = page_params(1, limit, max_limit=500)
    rows = (await db.execute(
        select(Product).options(*WITH_FARMER)
        .order_by(Product.created_at.desc(), Product.id.desc())
        .limit(limit)
    )).scalars().all()
    return {
        "success": True,
        "items": [product_to_dict(p) for p in rows],
        "limit": limit,
    }


@router.get("/orders")
async def admin_orders(
    status: Optional[str] = None,
    limit: int = 200,
    db: AsyncSession = Depends(get_db),
):
    _, limit, _ = page_params(1, limit, max_limit=500)
    rows, total = await stats.admin_orders(db, status=status, limit=limit)
    return {
        "success": True,
        "items": [order_to_dict(o) for o in rows],
        "total": total,
        "limit": limit,
    }


@router.get("/timings")
async def admin_timings():
    return {
        "success": True,
        "items": [
            {
                "kind": rec["kind"],
                "n": rec["n"],
                "mean_ms": round(rec["mean"] * 1000, 3),
                "std_ms": round(rec["std"] * 1000, 3),
            }
            for rec in timings.snapshot()
        ],
    }
