from __future__ import annotations
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import Principal, get_db, require_buyer
from ..helpers import page_params, pagination
from ..infra.timings import timeit
from ..model import catalog, chat, orders, stats
from ..model.accounts import buyer_to_dict, load_user, update_buyer_profile
from ..model.db import ROLE_FARMER

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/buyer", tags=["buyer"])


# ----------------------------
# Catalog (public)
# ----------------------------
@router.get("/products")
async def browse_products(
    category: Optional[str] = None,
    region: Optional[str] = None,
    minPrice: Optional[float] = None,
    maxPrice: Optional[float] = None,
    search: Optional[str] = None,
    sortBy: str = "createdAt",
    sortOrder: str = "desc",
    page: int = 1,
    limit: int = 12,
    db: AsyncSession = Depends(get_db),
):
    page, limit, offset = page_params(page, limit)
    async with timeit("catalog.list"):
        rows, total = await catalog.list_products(
            db,
            category=category,
            region=region,
            min_price=minPrice,
            max_price=maxPrice,
            search=(search or "").strip() or None,
            sort_by=sortBy,
            sort_order=sortOrder.lower(),
            offset=offset,
            limit=limit,
        )
    return {
        "success": True,
        "data": [catalog.product_to_dict(p) for p in rows],
        "pagination": pagination(page, limit, total),
    }


@router.get("/products/{product_id}")
async def product_detail(product_id: int, db: AsyncSession = Depends(get_db)):
    product = await catalog.get_product(db, product_id, with_farmer=True)
    if product is None:
        raise HTTPException(404, detail="Product not found")
    return {"success": True, "data": catalog.product_to_dict(product)}


# ----------------------------
# Cart
# ----------------------------
def _cart_line(o) -> dict:
    row = orders.order_to_dict(o)
    f = o.product.farmer if o.product is not None else None
    row["farmerName"] = (
        f.user.full_name if f is not None and f.user is not None else None
    )
    return row


@router.get("/cart")
async def get_cart(
    user: Principal = Depends(require_buyer),
    db: AsyncSession = Depends(get_db),
):
    lines = await orders.get_cart(db, user.buyer_id)
    return {
        "success": True,
        "data": [_cart_line(o) for o in lines],
        "totalItems": len(lines),
        "totalPrice": sum(o.total_price or 0.0 for o in lines),
    }


@router.post("/cart", status_code=201)
async def add_to_cart(
    payload: dict,
    user: Principal = Depends(require_buyer),
    db: AsyncSession = Depends(get_db),
):
    line = await orders.add_to_cart(
        db, user.buyer_id, payload.get("productId"), payload.get("quantity")
    )
    return {
        "success": True,
        "message": "Product added to cart",
        "data": _cart_line(line),
    }


@router.put("/cart/{item_id}")
async def update_cart_item(
    item_id: int,
    payload: dict,
    user: Principal = Depends(require_buyer),
    db: AsyncSession = Depends(get_db),
):
    line = await orders.update_cart_item(
        db, user.buyer_id, item_id, payload.get("quantity")
    )
    return {
        "success": True,
        "message": "Cart updated",
        "data": _cart_line(line),
    }


@router.delete("/cart/{item_id}")
async def remove_cart_item(
    item_id: int,
    user: Principal = Depends(require_buyer),
    db: AsyncSession = Depends(get_db),
):
    await orders.remove_cart_item(db, user.buyer_id, item_id)
    return {"success": True, "message": "Item removed from cart"}


@router.delete("/cart")
async def clear_cart(
    user: Principal = Depends(require_buyer),
    db: AsyncSession = Depends(get_db),
):
    removed = await orders.clear_cart(db, user.buyer_id)
    return {"success": True, "message": "Cart cleared", "removed": removed}


# ----------------------------
# Orders
# ----------------------------
@router.get("/orders")
async def list_orders(
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    user: Principal = Depends(require_buyer),
    db: AsyncSession = Depends(get_db),
):
    page, limit, offset = page_params(page, limit)
    rows, total = await orders.buyer_orders(
        db, user.buyer_id, status=status, offset=offset, limit=limit
    )
    return {
        "success": True,
        "data": [orders.order_to_dict(o) for o in rows],
        "stats": await orders.buyer_order_stats(db, user.buyer_id),
        "pagination": pagination(page, limit, total),
    }


@router.post("/orders", status_code=201)
async def place_order(
    payload: dict,
    user: Principal = Depends(require_buyer),
    db: AsyncSession = Depends(get_db),
):
    async with timeit("buyer.checkout"):
        placed = await orders.checkout(
            db,
            user.buyer_id,
            shipping_address=payload.get("shippingAddress"),
            payment_method=payload.get("paymentMethod"),
            notes=payload.get("notes"),
        )
    logger.info("buyer %s placed %d orders", user.buyer_id, len(placed))
    return {
        "success": True,
        "message": "Order placed successfully",
        "data": [orders.order_to_dict(o) for o in placed],
        "totalAmount": sum(o.total_price or 0.0 for o in placed),
    }


# ----------------------------
# Favorites
# ----------------------------
@router.get("/favorites")
async def list_favorites(
    page: int = 1,
    limit: int = 12,
    user: Principal = Depends(require_buyer),
    db: AsyncSession = Depends(get_db),
):
    page, limit, offset = page_params(page, limit)
    rows, total = await orders.list_favorites(
        db, user.buyer_id, offset=offset, limit=limit
    )
    return {
        "success": True,
        "data": [orders.order_to_dict(o) for o in rows],
        "pagination": pagination(page, limit, total),
    }


@router.post("/favorites/{product_id}", status_code=201)
async def add_favorite(
    product_id: int,
    user: Principal = Depends(require_buyer),
    db: AsyncSession = Depends(get_db),
):
    fav = await orders.add_favorite(db, user.buyer_id, product_id)
    return {
        "success": True,
        "message": "Added to favorites",
        "data": orders.order_to_dict(fav),
    }


@router.delete("/favorites/{product_id}")
async def remove_favorite(
    product_id: int,
    user: Principal = Depends(require_buyer),
    db: AsyncSession = Depends(get_db),
):
    await orders.remove_favorite(db, user.buyer_id, product_id)
    return {"success": True, "message": "Removed from favorites"}


# ----------------------------
# Chats
# ----------------------------
@router.get("/chats")
async def chats(
    user: Principal = Depends(require_buyer),
    db: AsyncSession = Depends(get_db),
):
    conversations, unread = await chat.list_conversations(db, user.user_id)
    return {
        "success": True,
        "conversations": conversations,
        "unreadCount": unread,
    }


@router.post("/chats", status_code=201)
async def send_chat(
    payload: dict,
    user: Principal = Depends(require_buyer),
    db: AsyncSession = Depends(get_db),
):
    msg = await chat.send_message(
        db, user.user_id, payload.get("farmerId"), payload.get("message"),
        receiver_role=ROLE_FARMER, order_id=payload.get("orderId"),
    )
    return {
        "success": True,
        "message": "Message sent successfully",
        "data": chat.message_to_dict(msg),
    }


@router.get("/chats/{farmer_id}")
async def chat_thread(
    farmer_id: int,
    user: Principal = Depends(require_buyer),
    db: AsyncSession = Depends(get_db),
):
    rows = await chat.get_thread(db, user.user_id, farmer_id)
    return {
        "success": True,
        "messages": [chat.message_to_dict(m) for m in rows],
    }


# ----------------------------
# Profile & dashboard
# ----------------------------
def _buyer_profile(row) -> dict:
    return {
        "id": row.buyer.id,
        "fullName": row.full_name,
        "email": row.email,
        "phone": row.phone,
        "isVerified": row.is_verified,
        **buyer_to_dict(row.buyer),
    }


@router.get("/profile")
async def get_profile(
    user: Principal = Depends(require_buyer),
    db: AsyncSession = Depends(get_db),
):
    row = await load_user(db, user.user_id)
    return {"success": True, "data": _buyer_profile(row)}


@router.put("/profile")
async def put_profile(
    payload: dict,
    user: Principal = Depends(require_buyer),
    db: AsyncSession = Depends(get_db),
):
    row = await update_buyer_profile(db, user.user_id, payload)
    return {
        "success": True,
        "message": "Profile updated successfully",
        "data": _buyer_profile(row),
    }


@router.get("/dashboard")
async def dashboard(
    user: Principal = Depends(require_buyer),
    db: AsyncSession = Depends(get_db),
):
    async with timeit("buyer.dashboard"):
        data = await stats.buyer_dashboard(db, user.buyer_id, user.user_id)
        row = await load_user(db, user.user_id)
        data["buyerProfile"] = _buyer_profile(row)
    return {"success": True, "data": data}
