# model/stats.py
"""
Aggregates behind the dashboards and the farmer insights page.

Everything here is computed from the orders and products tables; placed
orders that were cancelled never count towards revenue.
"""
from __future__ import annotations
import os
from collections import OrderedDict, defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .catalog import WITH_FARMER, product_to_dict
from .chat import unread_count
from .db import (
    Buyer, Farmer, Order, Product, User, ACTIVE_STATUSES, NOT_PLACED,
    ST_CANCELLED, ST_CART, ST_DELIVERED, ST_FAVORITE, ST_PENDING, P_AVAILABLE,
)
from .orders import ORDER_WITH_PRODUCT, farmer_orders, order_to_dict
from ..helpers import month_key, now_ts, to_iso

LOW_STOCK_THRESHOLD = float(os.getenv("LOW_STOCK_THRESHOLD", "10"))

DAY = 86400.0
MONTH = 30 * DAY
RANGES = {
    "week": 7 * DAY,
    "month": 30 * DAY,
    "quarter": 90 * DAY,
    "year": 365 * DAY,
}


def _months_back(now: float, n: int) -> List[str]:
    """Labels of the last n calendar months, oldest first."""
    d = datetime.fromtimestamp(now, tz=timezone.utc)
    y, m = d.year, d.month
    out = []
    for _ in range(n):
        out.append(datetime(y, m, 1, tzinfo=timezone.utc).strftime("%b %Y"))
        m -= 1
        if m == 0:
            y, m = y - 1, 12
    return out[::-1]


def _months_between(start: float, end: float) -> List[str]:
    s = datetime.fromtimestamp(start, tz=timezone.utc)
    e = datetime.fromtimestamp(end, tz=timezone.utc)
    n = (e.year - s.year) * 12 + (e.month - s.month) + 1
    return _months_back(end, max(1, n))


def _counts(o: Order) -> bool:
    return o.status not in NOT_PLACED and o.status != ST_CANCELLED


def _monthly(orders: List[Order], labels: List[str]) -> "OrderedDict[str, Dict[str, Any]]":
    buckets: "OrderedDict[str, Dict[str, Any]]" = OrderedDict(
        (label, {"month": label, "total": 0.0, "orders": 0})
        for label in labels
    )
    for o in orders:
        if not _counts(o) or o.order_date is None:
            continue
        b = buckets.get(month_key(o.order_date))
        if b is None:
            continue
        b["total"] += o.total_price or 0.0
        b["orders"] += 1
    return buckets


def _product_performance(orders: List[Order], top: int) -> List[Dict[str, Any]]:
    perf: Dict[int, Dict[str, Any]] = {}
    for o in orders:
        if not _counts(o) or o.product_id is None:
            continue
        p = perf.get(o.product_id)
        if p is None:
            p = perf[o.product_id] = {
                "productId": o.product_id,
                "productName": o.product.name if o.product else None,
                "grade": o.product.grade if o.product else None,
                "totalSold": 0.0,
                "totalRevenue": 0.0,
                "orderCount": 0,
            }
        p["totalSold"] += o.quantity or 0.0
        p["totalRevenue"] += o.total_price or 0.0
        p["orderCount"] += 1
    ranked = sorted(perf.values(), key=lambda p: -p["totalRevenue"])
    return ranked[:top]


# ----------------------------------------------------------------------------
# Farmer
# ----------------------------------------------------------------------------
def low_stock(products: List[Product], limit: int = 5) -> List[Dict[str, Any]]:
    rows = [
        p for p in products
        if p.status == P_AVAILABLE and p.quantity < LOW_STOCK_THRESHOLD
    ]
    rows.sort(key=lambda p: p.quantity)
    return [
        {
            "id": p.id,
            "name": p.name,
            "grade": p.grade,
            "quantity": p.quantity,
            "unit": p.unit,
            "status": p.status,
            "altitude": p.altitude,
        }
        for p in rows[:limit]
    ]


def farmer_order_row(o: Order) -> Dict[str, Any]:
    buyer_user = o.buyer.user if o.buyer is not None else None
    return {
        "id": o.id,
        "orderNumber": o.order_number,
        "productName": o.product.name if o.product else None,
        "buyerName": buyer_user.full_name if buyer_user else None,
        "buyerEmail": buyer_user.email if buyer_user else None,
        "quantity": o.quantity,
        "totalPrice": o.total_price,
        "status": o.status,
        "deliveryStatus": o.delivery_status,
        "paymentStatus": o.payment_status,
        "orderDate": to_iso(o.order_date),
    }


async def farmer_dashboard(
    db: AsyncSession,
    farmer_id: int,
    user_id: int,
    *,
    now: Optional[float] = None,
) -> Dict[str, Any]:
    now = now_ts() if now is None else now
    orders = await farmer_orders(db, farmer_id)
    products = list((await db.execute(
        select(Product).where(Product.farmer_id == farmer_id)
        .order_by(Product.created_at.desc(), Product.id.desc())
    )).scalars().all())

    counted = [o for o in orders if _counts(o)]
    recent = [o for o in counted if (o.order_date or 0) >= now - MONTH]
    stats = {
        "totalProducts": len(products),
        "availableProducts": sum(1 for p in products if p.status == P_AVAILABLE),
        "totalOrders": len(orders),
        "activeOrders": sum(1 for o in orders if o.status in ACTIVE_STATUSES),
        "pendingOrders": sum(1 for o in orders if o.status == ST_PENDING),
        "completedOrders": sum(1 for o in orders if o.status == ST_DELIVERED),
        "totalRevenue": sum(o.total_price or 0.0 for o in counted),
        "monthlyRevenue": sum(o.total_price or 0.0 for o in recent),
        "monthlyOrders": len(recent),
        "unreadMessages": await unread_count(db, user_id),
    }
    return {
        "stats": stats,
        "recentOrders": [farmer_order_row(o) for o in orders[:10]],
        "lowStockProducts": low_stock(products),
        "salesData": list(_monthly(orders, _months_back(now, 6)).values()),
        "productPerformance": _product_performance(orders, 10),
    }


async def farmer_insights(
    db: AsyncSession,
    farmer_id: int,
    range_name: str = "month",
    *,
    now: Optional[float] = None,
) -> Dict[str, Any]:
    window = RANGES.get(range_name)
    if window is None:
        raise HTTPException(
            400, detail=f"Invalid range: {range_name}. "
                        f"Use one of {', '.join(RANGES)}"
        )
    now = now_ts() if now is None else now
    start = now - window
    prev_start = start - window

    orders = await farmer_orders(db, farmer_id)
    products = list((await db.execute(
        select(Product).where(Product.farmer_id == farmer_id)
        .order_by(Product.name)
    )).scalars().all())

    current = [o for o in orders
               if _counts(o) and start <= (o.order_date or 0) <= now]
    previous = [o for o in orders
                if _counts(o) and prev_start <= (o.order_date or 0) < start]

    revenue = sum(o.total_price or 0.0 for o in current)
    prev_revenue = sum(o.total_price or 0.0 for o in previous)
    if prev_revenue > 0:
        growth = round((revenue - prev_revenue) / prev_revenue * 100.0, 1)
    else:
        growth = 100.0 if revenue > 0 else 0.0

    sales = []
    for b in _monthly(current, _months_between(start, now)).values():
        sales.append({
            "month": b["month"],
            "revenue": round(b["total"], 2),
            "orders": b["orders"],
            "avgOrder": round(b["total"] / b["orders"], 2) if b["orders"] else 0.0,
        })

    stock = [
        {
            "product": p.name,
            "quantity": p.quantity,
            "value": round(p.quantity * p.price_per_unit, 2),
            "category": p.category,
            "status": p.status,
        }
        for p in products
    ]

    top = [
        {
            "name": p["productName"],
            "revenue": round(p["totalRevenue"], 2),
            "quantity": p["totalSold"],
            "orders": p["orderCount"],
        }
        for p in _product_performance(current, 5)
    ]

    return {
        "range": range_name,
        "salesData": sales,
        "stockData": stock,
        "topProducts": top,
        "performance": {
            "totalRevenue": round(revenue, 2),
            "totalOrders": len(current),
            "avgOrderValue": round(revenue / len(current), 2) if current else 0.0,
            "growthRate": growth,
            "lowStockItems": sum(
                1 for p in products
                if p.status == P_AVAILABLE and p.quantity < LOW_STOCK_THRESHOLD
            ),
            "totalStockValue": round(
                sum(p.quantity * p.price_per_unit for p in products), 2
            ),
        },
        "recentOrders": [
            {
                "id": o.id,
                "orderNumber": o.order_number,
                "product": o.product.name if o.product else None,
                "quantity": o.quantity,
                "revenue": o.total_price,
                "date": to_iso(o.order_date),
            }
            for o in current[:5]
        ],
    }


# ----------------------------------------------------------------------------
# Buyer
# ----------------------------------------------------------------------------
async def buyer_dashboard(
    db: AsyncSession,
    buyer_id: int,
    user_id: int,
    *,
    now: Optional[float] = None,
) -> Dict[str, Any]:
    now = now_ts() if now is None else now
    orders = list((await db.execute(
        select(Order)
        .where(Order.buyer_id == buyer_id, Order.status.notin_(NOT_PLACED))
        .options(*ORDER_WITH_PRODUCT)
        # deleted products leave product_id NULL, the farmer link stays
        .options(selectinload(Order.farmer).selectinload(Farmer.user))
        .order_by(Order.order_date.desc(), Order.id.desc())
    )).scalars().all())

    line_counts = dict((await db.execute(
        select(Order.status, func.count(Order.id))
        .where(Order.buyer_id == buyer_id, Order.status.in_(NOT_PLACED))
        .group_by(Order.status)
    )).all())

    counted = [o for o in orders if _counts(o)]
    stats = {
        "totalOrders": len(orders),
        "cartItems": int(line_counts.get(ST_CART, 0)),
        "favorites": int(line_counts.get(ST_FAVORITE, 0)),
        "activeChats": await unread_count(db, user_id),
        "totalSpent": sum(o.total_price or 0.0 for o in counted),
    }

    farmers: Dict[int, Dict[str, Any]] = {}
    spent: Dict[int, float] = defaultdict(float)
    for o in counted:
        f = o.farmer
        if f is None:
            continue
        entry = farmers.get(f.id)
        if entry is None:
            entry = farmers[f.id] = {
                "id": f.id,
                "farmName": f.farm_name,
                "region": f.region,
                "user": {"fullName": f.user.full_name if f.user else None},
                "orderCount": 0,
            }
        entry["orderCount"] += 1
        spent[f.id] += o.total_price or 0.0
    for fid, entry in farmers.items():
        entry["totalSpent"] = spent[fid]
    top_farmers = sorted(
        farmers.values(), key=lambda f: (-f["orderCount"], -f["totalSpent"])
    )[:3]

    return {
        "stats": stats,
        "recentOrders": [order_to_dict(o) for o in orders[:5]],
        "monthlyData": list(_monthly(orders, _months_back(now, 6)).values()),
        "topFarmers": top_farmers,
        "recommendedProducts": await recommended_products(db, orders),
    }


async def recommended_products(
    db: AsyncSession, orders: List[Order], limit: int = 6
) -> List[Dict[str, Any]]:
    """Available listings from the categories the buyer already orders."""
    categories = {
        o.product.category for o in orders
        if o.product is not None and o.product.category
    }
    if not categories:
        return []
    rows = (await db.execute(
        select(Product)
        .where(Product.status == P_AVAILABLE,
               Product.quantity > 0,
               Product.category.in_(sorted(categories)))
        .options(*WITH_FARMER)
        .order_by(Product.cupping_score.is_(None),
                  Product.cupping_score.desc(),
                  Product.id)
        .limit(limit)
    )).scalars().all()
    return [product_to_dict(p) for p in rows]


# ----------------------------------------------------------------------------
# Admin
# ----------------------------------------------------------------------------
async def admin_stats(db: AsyncSession) -> Dict[str, Any]:
    users = dict((await db.execute(text(
        "SELECT role, COUNT(*) FROM users GROUP BY role"
    ))).all())
    products = dict((await db.execute(text(
        "SELECT status, COUNT(*) FROM products GROUP BY status"
    ))).all())
    orders = (await db.execute(text(
        "SELECT status, COUNT(*), COALESCE(SUM(total_price), 0) "
        "FROM orders WHERE status NOT IN ('cart', 'favorite') "
        "GROUP BY status"
    ))).all()
    unverified = (await db.execute(text(
        "SELECT COUNT(*) FROM users WHERE is_verified = :f"
    ), {"f": False})).scalar_one()
    by_status = {r[0]: int(r[1]) for r in orders}
    return {
        "users": {
            "total": sum(int(v) for v in users.values()),
            "byRole": {k: int(v) for k, v in users.items()},
            "unverified": int(unverified),
        },
        "products": {
            "total": sum(int(v) for v in products.values()),
            "byStatus": {k: int(v) for k, v in products.items()},
        },
        "orders": {
            "total": sum(by_status.values()),
            "byStatus": by_status,
            "revenue": float(sum(
                float(r[2]) for r in orders if r[0] != ST_CANCELLED
            )),
        },
    }


async def admin_users(
    db: AsyncSession, *, role: Optional[str] = None, offset: int = 0,
    limit: int = 50,
) -> tuple[List[User], int]:
    conds = [User.role == role] if role else []
    total = (await db.execute(
        select(func.count(User.id)).where(*conds)
    )).scalar_one()
    rows = (await db.execute(
        select(User).where(*conds)
        .options(selectinload(User.farmer), selectinload(User.buyer))
        .order_by(User.created_at.desc(), User.id.desc())
        .offset(offset).limit(limit)
    )).scalars().all()
    return list(rows), int(total)


async def admin_orders(
    db: AsyncSession, *, status: Optional[str] = None, offset: int = 0,
    limit: int = 50,
) -> tuple[List[Order], int]:
    conds = [Order.status.notin_(NOT_PLACED)]
    if status:
        conds.append(Order.status == status)
    total = (await db.execute(
        select(func.count(Order.id)).where(*conds)
    )).scalar_one()
    rows = (await db.execute(
        select(Order).where(*conds)
        .options(selectinload(Order.product),
                 selectinload(Order.buyer).selectinload(Buyer.user))
        .order_by(Order.order_date.desc(), Order.id.desc())
        .offset(offset).limit(limit)
    )).scalars().all()
    return list(rows), int(total)
