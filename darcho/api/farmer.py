from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import Principal, get_db, require_farmer
from ..helpers import now_ts, to_date, to_iso
from ..infra.timings import timeit
from ..model import catalog, chat, orders, stats
from ..model.accounts import (
    farmer_counts, farmer_profile_dict, load_user, update_farmer_profile,
)
from ..model.db import Order, ST_CONFIRMED, ST_DELIVERED, ROLE_BUYER

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/farmer", tags=["farmer"])


def farmer_order(o: Order) -> Dict[str, Any]:
    buyer_user = o.buyer.user if o.buyer is not None else None
    return {
        "id": o.id,
        "order_number": o.order_number,
        "buyer": buyer_user.full_name if buyer_user else None,
        "buyer_phone": buyer_user.phone if buyer_user else None,
        "product": o.product.name if o.product else None,
        "quantity": o.quantity,
        "unit_price": o.unit_price,
        "total": o.total_price,
        "status": o.status,
        "delivery": o.delivery_status,
        "date": to_date(o.order_date),
        "payment_status": o.payment_status,
        "shipping_address": o.shipping_address,
        "notes": o.notes,
    }


async def _profile(db: AsyncSession, user: Principal) -> Dict[str, Any]:
    row = await load_user(db, user.user_id)
    if row is None or row.farmer is None:
        raise HTTPException(404, detail="Farmer profile not found")
    profile = farmer_profile_dict(row.farmer, row)
    profile.update(await farmer_counts(db, row.farmer.id))
    return profile


# ----------------------------
# Products
# ----------------------------
@router.get("/products")
async def list_products(
    user: Principal = Depends(require_farmer),
    db: AsyncSession = Depends(get_db),
):
    rows = await catalog.farmer_products(db, user.farmer_id)
    return {
        "success": True,
        "products": [catalog.product_row(p) for p in rows],
        "count": len(rows),
        "timestamp": to_iso(now_ts()),
    }


@router.post("/products", status_code=201)
async def add_product(
    payload: dict,
    user: Principal = Depends(require_farmer),
    db: AsyncSession = Depends(get_db),
):
    async with timeit("farmer.product.create"):
        product = await catalog.create_product(db, user.farmer_id, payload)
    logger.info("farmer %s listed product id=%s", user.farmer_id, product.id)
    return {
        "success": True,
        "message": "Product created successfully",
        "product": catalog.product_row(product),
    }


@router.put("/products")
async def edit_product(
    payload: dict,
    user: Principal = Depends(require_farmer),
    db: AsyncSession = Depends(get_db),
):
    product = await catalog.update_product(db, user.farmer_id, payload)
    return {
        "success": True,
        "message": "Product updated successfully",
        "product": catalog.product_row(product),
    }


@router.delete("/products")
async def remove_product(
    id: Optional[int] = None,
    user: Principal = Depends(require_farmer),
    db: AsyncSession = Depends(get_db),
):
    deleted = await catalog.delete_product(db, user.farmer_id, id)
    logger.info("farmer %s deleted product id=%s", user.farmer_id, id)
    return {
        "success": True,
        "message": "Product deleted successfully",
        "deletedProduct": deleted,
    }


# ----------------------------
# Orders
# ----------------------------
@router.get("/orders")
async def list_orders(
    user: Principal = Depends(require_farmer),
    db: AsyncSession = Depends(get_db),
):
    rows = await orders.farmer_orders(db, user.farmer_id)
    return {
        "success": True,
        "orders": [farmer_order(o) for o in rows],
        "stats": {
            "total_orders": len(rows),
            "confirmed_orders": sum(
                1 for o in rows if o.status in (ST_CONFIRMED, ST_DELIVERED)
            ),
            "total_quantity": sum(o.quantity or 0.0 for o in rows),
        },
    }


async def _set_status(db: AsyncSession, user: Principal, data: dict) -> Order:
    async with timeit("farmer.order.status"):
        order = await orders.update_order_status(
            db,
            user.farmer_id,
            data.get("orderId"),
            data.get("status"),
            delivery_status=data.get("deliveryStatus"),
            payment_status=data.get("paymentStatus"),
        )
    logger.info("farmer %s moved order id=%s to %s",
                user.farmer_id, order.id, order.status)
    return order


@router.put("/orders")
async def update_order(
    payload: dict,
    user: Principal = Depends(require_farmer),
    db: AsyncSession = Depends(get_db),
):
    order = await _set_status(db, user, payload)
    return {
        "success": True,
        "message": "Order status updated successfully",
        "order": orders.order_to_dict(order),
    }


# ----------------------------
# Profile
# ----------------------------
@router.get("/profile")
async def get_profile(
    user: Principal = Depends(require_farmer),
    db: AsyncSession = Depends(get_db),
):
    profile = await _profile(db, user)
    products = await catalog.farmer_products(db, user.farmer_id)
    return {
        "success": True,
        "profile": profile,
        "recent_products": [catalog.product_row(p) for p in products[:5]],
        "stats": {
            "total_products": profile["total_products"],
            "total_orders": profile["total_orders"],
            "avg_rating": profile["avg_rating"],
            "response_time_hours": profile["response_time_hours"],
        },
    }


@router.put("/profile")
async def put_profile(
    payload: dict,
    user: Principal = Depends(require_farmer),
    db: AsyncSession = Depends(get_db),
):
    await update_farmer_profile(db, user.user_id, payload)
    return {
        "success": True,
        "message": "Profile updated successfully",
        "profile": await _profile(db, user),
    }


# ----------------------------
# Dashboard & insights
# ----------------------------
@router.get("/dashboard")
async def dashboard(
    user: Principal = Depends(require_farmer),
    db: AsyncSession = Depends(get_db),
):
    async with timeit("farmer.dashboard"):
        data = await stats.farmer_dashboard(db, user.farmer_id, user.user_id)
        data["farmerProfile"] = await _profile(db, user)
    return {"success": True, "data": data}


@router.post("/dashboard")
async def dashboard_action(
    payload: dict,
    user: Principal = Depends(require_farmer),
    db: AsyncSession = Depends(get_db),
):
    action = payload.get("action")
    data = payload.get("data") or {}
    if not isinstance(data, dict):
        raise HTTPException(400, detail="data must be an object")

    if action == "updateProfile":
        await update_farmer_profile(db, user.user_id, data)
        return {
            "success": True,
            "message": "Profile updated successfully",
            "data": await _profile(db, user),
        }
    if action == "updateProduct":
        product = await catalog.update_product(db, user.farmer_id, data)
        return {
            "success": True,
            "message": "Product updated successfully",
            "data": catalog.product_to_dict(product),
        }
    if action == "addProduct":
        product = await catalog.create_product(db, user.farmer_id, data)
        return {
            "success": True,
            "message": "Product added successfully",
            "data": catalog.product_to_dict(product),
        }
    if action == "updateOrderStatus":
        order = await _set_status(db, user, data)
        return {
            "success": True,
            "message": "Order status updated successfully",
            "data": orders.order_to_dict(order),
        }
    raise HTTPException(400, detail=f"Invalid action: {action}")


@router.get("/insights")
async def insights(
    range: str = "month",
    user: Principal = Depends(require_farmer),
    db: AsyncSession = Depends(get_db),
):
    async with timeit("farmer.insights"):
        data = await stats.farmer_insights(db, user.farmer_id, range)
    return {"success": True, "data": data}


# ----------------------------
# Chats
# ----------------------------
@router.get("/chats")
async def chats(
    user: Principal = Depends(require_farmer),
    db: AsyncSession = Depends(get_db),
):
    conversations, unread = await chat.list_conversations(db, user.user_id)
    return {
        "success": True,
        "conversations": conversations,
        "unreadCount": unread,
    }


@router.get("/chats/{buyer_id}")
async def chat_thread(
    buyer_id: int,
    user: Principal = Depends(require_farmer),
    db: AsyncSession = Depends(get_db),
):
    rows = await chat.get_thread(db, user.user_id, buyer_id)
    return {
        "success": True,
        "messages": [chat.message_to_dict(m) for m in rows],
    }


@router.post("/chats", status_code=201)
async def send_chat(
    payload: dict,
    user: Principal = Depends(require_farmer),
    db: AsyncSession = Depends(get_db),
):
    msg = await chat.send_message(
        db, user.user_id, payload.get("buyerId"), payload.get("message"),
        receiver_role=ROLE_BUYER, order_id=payload.get("orderId"),
    )
    return {
        "success": True,
        "message": "Message sent successfully",
        "data": chat.message_to_dict(msg),
    }
