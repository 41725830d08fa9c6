# model/catalog.py
"""
Product listings: serializers, the public catalog query and the farmer-side
create/update/delete operations.
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException
from sqlalchemy import asc, delete, desc, func, inspect, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .db import (
    Farmer, Order, Product, User, NOT_PLACED, PRODUCT_STATUSES, P_AVAILABLE,
    P_SOLD_OUT,
)
from ..helpers import is_number, now_ts, to_iso


WITH_FARMER = (selectinload(Product.farmer).selectinload(Farmer.user),)

SORTABLE = {
    "createdAt": Product.created_at,
    "pricePerUnit": Product.price_per_unit,
    "cuppingScore": Product.cupping_score,
    "name": Product.name,
    "quantity": Product.quantity,
}

# request key -> (column, kind)
PRODUCT_FIELDS: Dict[str, Tuple[str, str]] = {
    "name": ("name", "str"),
    "grade": ("grade", "str"),
    "category": ("category", "str"),
    "quantity": ("quantity", "num"),
    "unit": ("unit", "str"),
    "price": ("price_per_unit", "num"),
    "pricePerUnit": ("price_per_unit", "num"),
    "price_per_unit": ("price_per_unit", "num"),
    "description": ("description", "str"),
    "origin": ("origin_region", "str"),
    "originRegion": ("origin_region", "str"),
    "origin_region": ("origin_region", "str"),
    "altitude": ("altitude", "str"),
    "processingMethod": ("processing_method", "str"),
    "processing_method": ("processing_method", "str"),
    "certifications": ("certifications", "list"),
    "moistureContent": ("moisture_content", "num"),
    "moisture_content": ("moisture_content", "num"),
    "beanSize": ("bean_size", "str"),
    "bean_size": ("bean_size", "str"),
    "cuppingScore": ("cupping_score", "num"),
    "cupping_score": ("cupping_score", "num"),
    "imageUrls": ("image_urls", "list"),
    "image_urls": ("image_urls", "list"),
    "status": ("status", "str"),
}


def is_loaded(obj: Any, attr: str) -> bool:
    return attr not in inspect(obj).unloaded


def as_list(key: str, v: Any) -> List[Any]:
    """JSON list columns accept a bare string as a one-item list."""
    if isinstance(v, str):
        return [v]
    if not isinstance(v, list):
        raise HTTPException(400, detail=f"Invalid data types: {key}")
    return v


def like_pattern(term: str) -> str:
    # wildcards typed by the user match literally
    term = (term.replace("\\", "\\\\")
            .replace("%", "\\%").replace("_", "\\_"))
    return f"%{term}%"


def farmer_brief(farmer: Optional[Farmer]) -> Optional[Dict[str, Any]]:
    if farmer is None:
        return None
    out = {
        "id": farmer.id,
        "userId": farmer.user_id,
        "farmName": farmer.farm_name,
        "region": farmer.region,
    }
    if is_loaded(farmer, "user") and farmer.user is not None:
        out["user"] = {
            "id": farmer.user.id,
            "fullName": farmer.user.full_name,
            "phone": farmer.user.phone,
        }
    return out


def product_to_dict(p: Product) -> Dict[str, Any]:
    out = {
        "id": p.id,
        "farmerId": p.farmer_id,
        "name": p.name,
        "grade": p.grade,
        "category": p.category,
        "quantity": p.quantity,
        "unit": p.unit,
        "pricePerUnit": p.price_per_unit,
        "description": p.description,
        "originRegion": p.origin_region,
        "altitude": p.altitude,
        "harvestDate": to_iso(p.harvest_date),
        "processingMethod": p.processing_method,
        "certifications": list(p.certifications or []),
        "moistureContent": p.moisture_content,
        "beanSize": p.bean_size,
        "cuppingScore": p.cupping_score,
        "imageUrls": list(p.image_urls or []),
        "status": p.status,
        "createdAt": to_iso(p.created_at),
        "updatedAt": to_iso(p.updated_at),
    }
    if is_loaded(p, "farmer"):
        out["farmer"] = farmer_brief(p.farmer)
    return out


# farmer-facing rows use the flat snake_case shape of the products table
def product_row(p: Product) -> Dict[str, Any]:
    return {
        "id": p.id,
        "farmer_id": p.farmer_id,
        "name": p.name,
        "grade": p.grade,
        "quantity": p.quantity,
        "unit": p.unit,
        "price": p.price_per_unit,
        "category": p.category,
        "description": p.description,
        "origin_region": p.origin_region,
        "altitude": p.altitude,
        "processing_method": p.processing_method,
        "certifications": list(p.certifications or []),
        "image_url": (p.image_urls or [None])[0],
        "status": p.status,
        "created_at": to_iso(p.created_at),
        "updated_at": to_iso(p.updated_at),
    }


def product_values(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Map a request body onto Product columns, validating types.

    Unknown keys are ignored; None means "leave unchanged".
    """
    values: Dict[str, Any] = {}
    for key, (column, kind) in PRODUCT_FIELDS.items():
        if key not in payload or payload[key] is None:
            continue
        v = payload[key]
        if kind == "num" and not is_number(v):
            raise HTTPException(400, detail=f"Invalid data types: {key}")
        if kind == "str" and not isinstance(v, str):
            raise HTTPException(400, detail=f"Invalid data types: {key}")
        if kind == "list":
            v = as_list(key, v)
        values[column] = v

    # single image_url shorthand used by the farmer product form
    image_url = payload.get("image_url")
    if isinstance(image_url, str) and image_url:
        values["image_urls"] = [image_url]

    if "status" in values and values["status"] not in PRODUCT_STATUSES:
        raise HTTPException(400, detail="Invalid product status")
    if values.get("quantity", 0) < 0:
        raise HTTPException(400, detail="quantity must not be negative")
    if values.get("price_per_unit", 0) < 0:
        raise HTTPException(400, detail="price must not be negative")
    return values


# ----------------------------------------------------------------------------
# Public catalog
# ----------------------------------------------------------------------------
async def list_products(
    db: AsyncSession,
    *,
    category: Optional[str] = None,
    region: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    search: Optional[str] = None,
    sort_by: str = "createdAt",
    sort_order: str = "desc",
    offset: int = 0,
    limit: int = 12,
) -> Tuple[List[Product], int]:
    conds = [Product.status == P_AVAILABLE]
    if category and category != "all":
        conds.append(Product.category == category)
    if region:
        conds.append(Product.origin_region == region)
    if min_price is not None:
        conds.append(Product.price_per_unit >= min_price)
    if max_price is not None:
        conds.append(Product.price_per_unit <= max_price)
    if search:
        like = like_pattern(search)
        conds.append(or_(
            Product.name.ilike(like, escape="\\"),
            Product.description.ilike(like, escape="\\"),
            Product.origin_region.ilike(like, escape="\\"),
            User.full_name.ilike(like, escape="\\"),
        ))

    base = (
        select(Product)
        .join(Farmer, Farmer.id == Product.farmer_id)
        .join(User, User.id == Farmer.user_id)
        .where(*conds)
    )

    total = (await db.execute(
        select(func.count()).select_from(base.subquery())
    )).scalar_one()

    column = SORTABLE.get(sort_by, Product.created_at)
    direction = asc if sort_order == "asc" else desc
    rows = (await db.execute(
        base.options(*WITH_FARMER)
        .order_by(direction(column), Product.id)
        .offset(offset)
        .limit(limit)
    )).scalars().all()
    return list(rows), int(total)


async def get_product(
    db: AsyncSession, product_id: int, *, with_farmer: bool = False
) -> Optional[Product]:
    stmt = select(Product).where(Product.id == product_id)
    if with_farmer:
        stmt = stmt.options(*WITH_FARMER)
    return (await db.execute(stmt)).scalar_one_or_none()


# ----------------------------------------------------------------------------
# Farmer side
# ----------------------------------------------------------------------------
async def farmer_products(db: AsyncSession, farmer_id: int) -> List[Product]:
    rows = (await db.execute(
        select(Product)
        .where(Product.farmer_id == farmer_id)
        .order_by(Product.created_at.desc(), Product.id.desc())
    )).scalars().all()
    return list(rows)


async def create_product(
    db: AsyncSession, farmer_id: int, payload: Dict[str, Any]
) -> Product:
    name = payload.get("name")
    quantity = payload.get("quantity")
    price = payload.get("price", payload.get("pricePerUnit"))
    if not name or quantity is None or price is None:
        raise HTTPException(
            400,
            detail="Missing required fields: name, quantity, and price are "
                   "required",
        )
    if not isinstance(name, str) or not is_number(quantity) \
            or not is_number(price):
        raise HTTPException(400, detail="Invalid data types")

    values = product_values(payload)
    values.setdefault("status", P_AVAILABLE)
    if values["status"] == P_AVAILABLE and values["quantity"] <= 0:
        values["status"] = P_SOLD_OUT
    product = Product(farmer_id=farmer_id, **values)
    db.add(product)
    await db.commit()
    return product


async def _own_product(
    db: AsyncSession, farmer_id: int, product_id: Any
) -> Product:
    try:
        pid = int(product_id)
    except (TypeError, ValueError):
        raise HTTPException(400, detail="Product ID is required")
    product = (await db.execute(
        select(Product).where(
            Product.id == pid, Product.farmer_id == farmer_id
        )
    )).scalar_one_or_none()
    if product is None:
        raise HTTPException(
            404,
            detail="Product not found or you don't have permission to "
                   "modify it",
        )
    return product


async def update_product(
    db: AsyncSession, farmer_id: int, payload: Dict[str, Any]
) -> Product:
    if not payload.get("id"):
        raise HTTPException(400, detail="Product ID is required")
    product = await _own_product(db, farmer_id, payload["id"])
    values = product_values(payload)
    for column, value in values.items():
        setattr(product, column, value)
    # restocking a sold-out listing puts it back on sale
    if "status" not in values:
        if product.status == P_SOLD_OUT and product.quantity > 0:
            product.status = P_AVAILABLE
        elif product.status == P_AVAILABLE and product.quantity <= 0:
            product.status = P_SOLD_OUT
    product.updated_at = now_ts()
    await db.commit()
    return product


async def delete_product(
    db: AsyncSession, farmer_id: int, product_id: Any
) -> Dict[str, Any]:
    if not product_id:
        raise HTTPException(400, detail="Product ID is required")
    product = await _own_product(db, farmer_id, product_id)
    snapshot = product_row(product)
    # cart lines and favorites die with the listing; placed orders keep
    # their history with product_id set to NULL
    await db.execute(delete(Order).where(
        Order.product_id == product.id, Order.status.in_(NOT_PLACED)
    ))
    await db.delete(product)
    await db.commit()
    return snapshot
