"""
Demo data: one farmer, one buyer, two coffees and a confirmed order.

    python -m darcho.seed [--database-url sqlite:///./darcho.db]

Running it twice leaves the data as it is.
"""
from __future__ import annotations
import argparse
import asyncio
import logging
import os
from typing import Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from .helpers import new_order_number, now_ts
from .infra.sql import make_async_engine
from .model.accounts import hash_password
from .model.db import (
    Base, Buyer, Farmer, Order, Product, User, P_AVAILABLE, ROLE_BUYER,
    ROLE_FARMER, ST_CONFIRMED,
)

logger = logging.getLogger(__name__)

DEMO_FARMER = {
    "email": "farmer@darcho.com",
    "password": "farmer123",
    "phone": "+251911000001",
    "full_name": "Abebe Kebede",
    "residence": "Yirgacheffe",
    "region": "SNNPR",
}
DEMO_BUYER = {
    "email": "buyer@darcho.com",
    "password": "buyer123",
    "phone": "+251911000002",
    "full_name": "Sara Tesfaye",
    "residence": "Addis Ababa",
    "region": "Addis Ababa",
}
DEMO_PRODUCTS = [
    {
        "name": "Yirgacheffe Grade 1",
        "grade": "Grade 1",
        "category": "washed",
        "quantity": 500.0,
        "price_per_unit": 12.5,
        "description": "Floral, bergamot and lemon notes.",
        "origin_region": "Yirgacheffe",
        "altitude": "1900-2200m",
        "processing_method": "washed",
        "cupping_score": 88.5,
        "certifications": ["organic"],
    },
    {
        "name": "Guji Natural",
        "grade": "Grade 2",
        "category": "natural",
        "quantity": 300.0,
        "price_per_unit": 10.0,
        "description": "Blueberry and dark chocolate.",
        "origin_region": "Guji",
        "altitude": "1800-2100m",
        "processing_method": "natural",
        "cupping_score": 86.0,
        "certifications": [],
    },
]


async def _user(db, info: Dict[str, str], role: str) -> User:
    user = (await db.execute(
        select(User).where(User.email == info["email"])
    )).scalar_one_or_none()
    if user is not None:
        return user
    user = User(
        email=info["email"],
        phone=info["phone"],
        full_name=info["full_name"],
        residence=info["residence"],
        region=info["region"],
        password_hash=hash_password(info["password"]),
        role=role,
        is_verified=True,
    )
    db.add(user)
    await db.flush()
    logger.info("created demo %s %s", role, info["email"])
    return user


async def seed(engine: AsyncEngine, session_factory: async_sessionmaker) -> Dict[str, int]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with session_factory() as db:
        fuser = await _user(db, DEMO_FARMER, ROLE_FARMER)
        farmer = (await db.execute(
            select(Farmer).where(Farmer.user_id == fuser.id)
        )).scalar_one_or_none()
        if farmer is None:
            farmer = Farmer(
                user_id=fuser.id,
                farm_name="Kebede Family Farm",
                region=DEMO_FARMER["region"],
                residence=DEMO_FARMER["residence"],
                farm_size="4 ha",
                years_farming=15,
                certifications=["organic"],
            )
            db.add(farmer)
            await db.flush()

        buser = await _user(db, DEMO_BUYER, ROLE_BUYER)
        buyer = (await db.execute(
            select(Buyer).where(Buyer.user_id == buser.id)
        )).scalar_one_or_none()
        if buyer is None:
            buyer = Buyer(
                user_id=buser.id,
                company_name="Addis Roasters",
                business_type="roaster",
                location=DEMO_BUYER["residence"],
                buyer_type="local",
                preferred_regions=["Yirgacheffe", "Guji"],
            )
            db.add(buyer)
            await db.flush()

        products = []
        for info in DEMO_PRODUCTS:
            p = (await db.execute(
                select(Product).where(
                    Product.farmer_id == farmer.id,
                    Product.name == info["name"],
                )
            )).scalar_one_or_none()
            if p is None:
                p = Product(farmer_id=farmer.id, status=P_AVAILABLE, **info)
                db.add(p)
                await db.flush()
            products.append(p)

        has_order = (await db.execute(
            select(Order.id).where(
                Order.buyer_id == buyer.id, Order.status == ST_CONFIRMED
            ).limit(1)
        )).first()
        if has_order is None:
            p = products[0]
            ts = now_ts()
            qty = 50.0
            p.quantity -= qty
            db.add(Order(
                order_number=new_order_number("ORD"),
                product_id=p.id,
                buyer_id=buyer.id,
                farmer_id=farmer.id,
                quantity=qty,
                unit_price=p.price_per_unit,
                total_price=p.price_per_unit * qty,
                status=ST_CONFIRMED,
                delivery_status=ST_CONFIRMED,
                payment_status="paid",
                payment_method="bank_transfer",
                shipping_address="Bole, Addis Ababa",
                order_date=ts,
                confirmed_date=ts,
            ))

        await db.commit()
        return {
            "farmer_id": farmer.id,
            "buyer_id": buyer.id,
            "products": len(products),
        }


def main() -> None:
    ap = argparse.ArgumentParser(description="Load Darcho demo data")
    ap.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL", "sqlite:///./darcho.db"),
        help="database to seed (default: $DATABASE_URL)",
    )
    args = ap.parse_args()
    logging.basicConfig(level=logging.INFO,
                        format="%(levelname)s %(name)s: %(message)s")

    async def _run():
        engine, SessionAsync = make_async_engine(args.database_url)
        try:
            out = await seed(engine, SessionAsync)
        finally:
            await engine.dispose()
        logger.info("seeded: %s", out)

    asyncio.run(_run())


if __name__ == "__main__":
    main()
