# model/orders.py
"""
Cart lines, favorites and placed orders all live in the orders table and are
told apart by their status. This module owns every transition between them:

- cart -> pending (checkout) decrements stock with a guarded UPDATE per line
  inside one transaction; any short line rolls the whole checkout back
- pending/confirmed/... -> cancelled gives the stock back exactly once
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .catalog import is_loaded, product_to_dict
from .db import (
    Buyer, Farmer, Order, Product,
    NOT_PLACED, PLACED_STATUSES,
    ST_CART, ST_FAVORITE, ST_PENDING, ST_CONFIRMED, ST_PROCESSING, ST_SHIPPED,
    ST_DELIVERED, ST_CANCELLED,
    P_AVAILABLE, P_SOLD_OUT,
)
from ..helpers import is_number, new_order_number, now_ts, to_iso


ORDER_WITH_PRODUCT = (
    selectinload(Order.product)
    .selectinload(Product.farmer)
    .selectinload(Farmer.user),
)
ORDER_WITH_BUYER = (
    selectinload(Order.product),
    selectinload(Order.buyer).selectinload(Buyer.user),
)


class OutOfStock(Exception):
    def __init__(self, product_name: str):
        super().__init__(product_name)
        self.product_name = product_name


def order_to_dict(o: Order) -> Dict[str, Any]:
    out = {
        "id": o.id,
        "orderNumber": o.order_number,
        "productId": o.product_id,
        "buyerId": o.buyer_id,
        "farmerId": o.farmer_id,
        "quantity": o.quantity,
        "unitPrice": o.unit_price,
        "totalPrice": o.total_price,
        "status": o.status,
        "deliveryStatus": o.delivery_status,
        "paymentStatus": o.payment_status,
        "paymentMethod": o.payment_method,
        "shippingAddress": o.shipping_address,
        "notes": o.notes,
        "orderDate": to_iso(o.order_date),
        "confirmedDate": to_iso(o.confirmed_date),
        "shippedDate": to_iso(o.shipped_date),
        "deliveredDate": to_iso(o.delivered_date),
    }
    if is_loaded(o, "product"):
        out["product"] = (
            product_to_dict(o.product) if o.product is not None else None
        )
    if is_loaded(o, "buyer") and o.buyer is not None:
        buyer = {"id": o.buyer.id, "companyName": o.buyer.company_name}
        if is_loaded(o.buyer, "user") and o.buyer.user is not None:
            buyer["user"] = {
                "fullName": o.buyer.user.full_name,
                "email": o.buyer.user.email,
                "phone": o.buyer.user.phone,
            }
        out["buyer"] = buyer
    return out


async def load_order(db: AsyncSession, order_id: int) -> Order:
    return (await db.execute(
        select(Order).where(Order.id == order_id).options(*ORDER_WITH_PRODUCT)
    )).scalar_one()


def _quantity(value: Any) -> float:
    if not is_number(value) or value <= 0:
        raise HTTPException(400, detail="quantity must be a positive number")
    return float(value)


async def _available_product(db: AsyncSession, product_id: Any) -> Product:
    try:
        pid = int(product_id)
    except (TypeError, ValueError):
        raise HTTPException(400, detail="Product ID is required")
    product = await db.get(Product, pid)
    if product is None:
        raise HTTPException(404, detail="Product not found")
    return product


# ----------------------------------------------------------------------------
# Cart
# ----------------------------------------------------------------------------
async def get_cart(db: AsyncSession, buyer_id: int) -> List[Order]:
    rows = (await db.execute(
        select(Order)
        .where(Order.buyer_id == buyer_id, Order.status == ST_CART)
        .options(*ORDER_WITH_PRODUCT)
        .order_by(Order.created_at, Order.id)
    )).scalars().all()
    return list(rows)


async def add_to_cart(
    db: AsyncSession, buyer_id: int, product_id: Any, quantity: Any
) -> Order:
    if not product_id or not quantity:
        raise HTTPException(
            400, detail="Product ID and quantity are required"
        )
    qty = _quantity(quantity)
    product = await _available_product(db, product_id)
    if product.status != P_AVAILABLE:
        raise HTTPException(400, detail="Product is not available")

    # one cart line per product: adding again grows the line
    line = (await db.execute(
        select(Order).where(
            Order.buyer_id == buyer_id,
            Order.product_id == product.id,
            Order.status == ST_CART,
        )
    )).scalar_one_or_none()
    wanted = qty + (line.quantity if line is not None else 0.0)
    if product.quantity < wanted:
        raise HTTPException(400, detail="Insufficient stock available")

    if line is None:
        line = Order(
            order_number=new_order_number("CART"),
            product_id=product.id,
            buyer_id=buyer_id,
            farmer_id=product.farmer_id,
            status=ST_CART,
            delivery_status="pending",
            payment_status="pending",
        )
        db.add(line)
    line.quantity = wanted
    line.unit_price = product.price_per_unit
    line.total_price = product.price_per_unit * wanted
    await db.commit()
    return await load_order(db, line.id)


async def _cart_line(db: AsyncSession, buyer_id: int, item_id: int) -> Order:
    line = (await db.execute(
        select(Order).where(
            Order.id == item_id,
            Order.buyer_id == buyer_id,
            Order.status == ST_CART,
        )
    )).scalar_one_or_none()
    if line is None:
        raise HTTPException(404, detail="Cart item not found")
    return line


async def update_cart_item(
    db: AsyncSession, buyer_id: int, item_id: int, quantity: Any
) -> Order:
    qty = _quantity(quantity)
    line = await _cart_line(db, buyer_id, item_id)
    product = await db.get(Product, line.product_id) \
        if line.product_id is not None else None
    if product is None:
        raise HTTPException(404, detail="Product not found")
    if product.quantity < qty:
        raise HTTPException(400, detail="Insufficient stock available")
    line.quantity = qty
    line.unit_price = product.price_per_unit
    line.total_price = product.price_per_unit * qty
    await db.commit()
    return await load_order(db, line.id)


async def remove_cart_item(
    db: AsyncSession, buyer_id: int, item_id: int
) -> None:
    line = await _cart_line(db, buyer_id, item_id)
    await db.delete(line)
    await db.commit()


async def clear_cart(db: AsyncSession, buyer_id: int) -> int:
    res = await db.execute(
        delete(Order).where(
            Order.buyer_id == buyer_id, Order.status == ST_CART
        )
    )
    await db.commit()
    return res.rowcount or 0


# ----------------------------------------------------------------------------
# Checkout
# ----------------------------------------------------------------------------
async def checkout(
    db: AsyncSession,
    buyer_id: int,
    *,
    shipping_address: Optional[str] = None,
    payment_method: Optional[str] = None,
    notes: Optional[str] = None,
) -> List[Order]:
    cart = (await db.execute(
        select(Order)
        .where(Order.buyer_id == buyer_id, Order.status == ST_CART)
        .options(selectinload(Order.product))
        .order_by(Order.id)
    )).scalars().all()
    if not cart:
        raise HTTPException(400, detail="Cart is empty")

    ts = now_ts()
    placed_ids: List[int] = []
    touched: set[int] = set()
    try:
        for item in cart:
            name = item.product.name if item.product is not None \
                else "unknown product"
            if item.product_id is None:
                raise OutOfStock(name)
            # guarded decrement: only succeeds while enough stock is left,
            # so two concurrent checkouts cannot both take the last kilos
            res = await db.execute(
                update(Product)
                .where(
                    Product.id == item.product_id,
                    Product.status == P_AVAILABLE,
                    Product.quantity >= item.quantity,
                )
                .values(quantity=Product.quantity - item.quantity)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                raise OutOfStock(name)
            touched.add(item.product_id)

            item.status = ST_PENDING
            item.order_number = new_order_number("ORD")
            item.shipping_address = shipping_address
            item.payment_method = payment_method
            item.notes = notes
            item.order_date = ts
            item.total_price = item.unit_price * item.quantity
            placed_ids.append(item.id)

        await db.execute(
            update(Product)
            .where(Product.id.in_(list(touched)), Product.quantity <= 0)
            .values(status=P_SOLD_OUT)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except OutOfStock as e:
        await db.rollback()
        raise HTTPException(
            409, detail=f"Insufficient stock for {e.product_name}"
        )

    # the guarded UPDATEs bypassed the identity map
    db.expire_all()
    rows = (await db.execute(
        select(Order)
        .where(Order.id.in_(placed_ids))
        .options(*ORDER_WITH_PRODUCT)
        .order_by(Order.id)
    )).scalars().all()
    return list(rows)


# ----------------------------------------------------------------------------
# Placed orders
# ----------------------------------------------------------------------------
async def buyer_orders(
    db: AsyncSession,
    buyer_id: int,
    *,
    status: Optional[str] = None,
    offset: int = 0,
    limit: int = 10,
) -> Tuple[List[Order], int]:
    conds = [Order.buyer_id == buyer_id, Order.status.notin_(NOT_PLACED)]
    if status and status != "all":
        conds.append(Order.status == status)
    total = (await db.execute(
        select(func.count(Order.id)).where(*conds)
    )).scalar_one()
    rows = (await db.execute(
        select(Order)
        .where(*conds)
        .options(*ORDER_WITH_PRODUCT)
        .order_by(Order.order_date.desc(), Order.id.desc())
        .offset(offset)
        .limit(limit)
    )).scalars().all()
    return list(rows), int(total)


async def buyer_order_stats(db: AsyncSession, buyer_id: int) -> Dict[str, Any]:
    rows = (await db.execute(
        select(Order.status, func.count(Order.id), func.sum(Order.total_price))
        .where(Order.buyer_id == buyer_id, Order.status.notin_(NOT_PLACED))
        .group_by(Order.status)
    )).all()
    by_status = {r[0]: int(r[1]) for r in rows}
    return {
        "total": sum(by_status.values()),
        "delivered": by_status.get(ST_DELIVERED, 0),
        "processing": by_status.get(ST_PROCESSING, 0),
        "shipped": by_status.get(ST_SHIPPED, 0),
        "totalSpent": float(sum(
            (r[2] or 0) for r in rows if r[0] != ST_CANCELLED
        )),
    }


async def farmer_orders(db: AsyncSession, farmer_id: int) -> List[Order]:
    rows = (await db.execute(
        select(Order)
        .where(Order.farmer_id == farmer_id,
               Order.status.notin_(NOT_PLACED))
        .options(*ORDER_WITH_BUYER)
        .order_by(Order.order_date.desc(), Order.id.desc())
    )).scalars().all()
    return list(rows)


async def update_order_status(
    db: AsyncSession,
    farmer_id: int,
    order_id: Any,
    status: Optional[str],
    *,
    delivery_status: Optional[str] = None,
    payment_status: Optional[str] = None,
) -> Order:
    if not order_id or not status:
        raise HTTPException(400, detail="Order ID and status are required")
    if status not in PLACED_STATUSES:
        raise HTTPException(400, detail=f"Invalid order status: {status}")
    try:
        oid = int(order_id)
    except (TypeError, ValueError):
        raise HTTPException(400, detail="Order ID and status are required")

    order = (await db.execute(
        select(Order).where(
            Order.id == oid,
            Order.farmer_id == farmer_id,
            Order.status.notin_(NOT_PLACED),
        )
    )).scalar_one_or_none()
    if order is None:
        raise HTTPException(404, detail="Order not found or unauthorized")

    previous = order.status
    if previous == ST_CANCELLED and status != ST_CANCELLED:
        raise HTTPException(400, detail="Cancelled orders cannot be reopened")
    if previous == ST_DELIVERED and status == ST_CANCELLED:
        raise HTTPException(400, detail="Delivered orders cannot be cancelled")

    ts = now_ts()
    if status == ST_CANCELLED and previous != ST_CANCELLED \
            and order.product_id is not None:
        await db.execute(
            update(Product)
            .where(Product.id == order.product_id)
            .values(quantity=Product.quantity + order.quantity)
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            update(Product)
            .where(Product.id == order.product_id,
                   Product.status == P_SOLD_OUT,
                   Product.quantity > 0)
            .values(status=P_AVAILABLE)
            .execution_options(synchronize_session=False)
        )

    order.status = status
    order.delivery_status = delivery_status or status
    if payment_status:
        order.payment_status = payment_status
    if status == ST_CONFIRMED:
        order.confirmed_date = ts
    elif status == ST_SHIPPED:
        order.shipped_date = ts
    elif status == ST_DELIVERED:
        order.delivered_date = ts
    await db.commit()
    return order


# ----------------------------------------------------------------------------
# Favorites
# ----------------------------------------------------------------------------
async def list_favorites(
    db: AsyncSession, buyer_id: int, *, offset: int = 0, limit: int = 12
) -> Tuple[List[Order], int]:
    conds = [Order.buyer_id == buyer_id, Order.status == ST_FAVORITE]
    total = (await db.execute(
        select(func.count(Order.id)).where(*conds)
    )).scalar_one()
    rows = (await db.execute(
        select(Order)
        .where(*conds)
        .options(*ORDER_WITH_PRODUCT)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset(offset)
        .limit(limit)
    )).scalars().all()
    return list(rows), int(total)


async def add_favorite(
    db: AsyncSession, buyer_id: int, product_id: int
) -> Order:
    product = await _available_product(db, product_id)
    existing = (await db.execute(
        select(Order.id).where(
            Order.buyer_id == buyer_id,
            Order.product_id == product.id,
            Order.status == ST_FAVORITE,
        )
    )).first()
    if existing is not None:
        raise HTTPException(400, detail="Product already in favorites")
    favorite = Order(
        order_number=new_order_number("FAV"),
        product_id=product.id,
        buyer_id=buyer_id,
        farmer_id=product.farmer_id,
        quantity=0.0,
        unit_price=0.0,
        total_price=0.0,
        status=ST_FAVORITE,
        delivery_status="none",
        payment_status="none",
    )
    db.add(favorite)
    await db.commit()
    return await load_order(db, favorite.id)


async def remove_favorite(
    db: AsyncSession, buyer_id: int, product_id: int
) -> None:
    res = await db.execute(
        delete(Order).where(
            Order.buyer_id == buyer_id,
            Order.product_id == product_id,
            Order.status == ST_FAVORITE,
        )
    )
    if not res.rowcount:
        raise HTTPException(404, detail="Favorite not found")
    await db.commit()

