from __future__ import annotations
import logging
import os
from typing import Any, Dict, Optional

import bcrypt
from fastapi import HTTPException
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .catalog import as_list, is_loaded
from .db import Buyer, Farmer, Order, Product, User, NOT_PLACED
from .db import ROLE_BUYER, ROLE_FARMER
from ..helpers import digits_only, is_valid_email, now_ts, to_iso

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
MIN_PASSWORD_LENGTH = 8

WITH_PROFILES = (selectinload(User.farmer), selectinload(User.buyer))


# ----------------------------
# Passwords
# ----------------------------
def hash_password(password: str) -> str:
    return bcrypt.hashpw(
        password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    ).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(
            password.encode("utf-8"), password_hash.encode("utf-8")
        )
    except ValueError:
        # malformed hash or password bcrypt refuses to handle
        return False


def check_password_policy(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            400,
            detail=f"Password must be at least {MIN_PASSWORD_LENGTH} "
                   "characters",
        )
    # bcrypt only looks at the first 72 bytes
    if len(password.encode("utf-8")) > 72:
        raise HTTPException(400, detail="Password is too long")


# ----------------------------
# Serializers
# ----------------------------
def user_to_dict(user: User) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "id": user.id,
        "email": user.email,
        "phone": user.phone,
        "role": user.role,
        "fullName": user.full_name,
        "isVerified": user.is_verified,
        "residence": user.residence,
        "region": user.region,
        "createdAt": to_iso(user.created_at),
    }
    if is_loaded(user, "farmer") and user.farmer is not None:
        out["farmer"] = {
            "id": user.farmer.id,
            "farmName": user.farmer.farm_name,
            "region": user.farmer.region,
        }
        out["farmer_id"] = user.farmer.id
    if is_loaded(user, "buyer") and user.buyer is not None:
        out["buyer"] = {
            "id": user.buyer.id,
            "companyName": user.buyer.company_name,
        }
        out["buyer_id"] = user.buyer.id
    return out


def buyer_to_dict(b: Buyer) -> Dict[str, Any]:
    return {
        "id": b.id,
        "userId": b.user_id,
        "companyName": b.company_name,
        "businessType": b.business_type,
        "location": b.location,
        "buyerType": b.buyer_type,
        "website": b.website,
        "taxId": b.tax_id,
        "annualPurchaseCapacity": b.annual_purchase_capacity,
        "preferredRegions": list(b.preferred_regions or []),
        "createdAt": to_iso(b.created_at),
        "updatedAt": to_iso(b.updated_at),
    }


def farmer_profile_dict(f: Farmer, user: User) -> Dict[str, Any]:
    return {
        "id": f.id,
        "fullname": user.full_name,
        "phone": user.phone,
        "email": user.email,
        "region": f.region,
        "residence": f.residence,
        "farm_size": f.farm_size,
        "years_farming": f.years_farming,
        "farm_name": f.farm_name,
        "certifications": list(f.certifications or []),
        "join_date": to_iso(f.join_date),
        "experience": (
            f"{f.years_farming} years" if f.years_farming
            else "Not specified"
        ),
        "avg_rating": f.avg_rating,
        "response_time_hours": f.response_time_hours,
        "profile_image_url": f.profile_image_url,
        "is_verified": user.is_verified,
    }


# ----------------------------
# Input coercion
# ----------------------------
def _text(payload: Dict[str, Any], key: str) -> Optional[str]:
    v = payload.get(key)
    if v is None:
        return None
    if not isinstance(v, str):
        raise HTTPException(400, detail=f"Invalid data types: {key}")
    return v.strip()


def _email(payload: Dict[str, Any]) -> Optional[str]:
    # stored lower-cased so lookups and uniqueness agree
    return (_text(payload, "email") or "").lower() or None


def _years(v: Any) -> Optional[int]:
    if v in (None, ""):
        return None
    if isinstance(v, bool):
        raise HTTPException(400, detail="years_farming must be a number")
    try:
        return int(v)
    except (TypeError, ValueError):
        raise HTTPException(400, detail="years_farming must be a number")


# ----------------------------
# Queries
# ----------------------------
async def load_user(db: AsyncSession, user_id: int) -> Optional[User]:
    return (await db.execute(
        select(User).where(User.id == user_id).options(*WITH_PROFILES)
    )).scalar_one_or_none()


async def find_by_phone(db: AsyncSession, phone: str) -> Optional[User]:
    clean = digits_only(phone)
    conds = [User.phone == phone.strip()]
    if clean:
        conds += [User.phone == clean, User.phone.contains(clean)]
    return (await db.execute(
        select(User).where(or_(*conds)).options(*WITH_PROFILES)
        .order_by(User.id).limit(1)
    )).scalar_one_or_none()


async def register_user(db: AsyncSession, payload: Dict[str, Any]) -> User:
    full_name = _text(payload, "fullName") or ""
    phone = _text(payload, "phone") or ""
    residence = _text(payload, "residence") or ""
    region = _text(payload, "region") or ""
    password = payload.get("password") or ""
    if not isinstance(password, str):
        raise HTTPException(400, detail="Invalid data types: password")
    role = (_text(payload, "role") or "").lower()
    email = _email(payload)

    if not (full_name and phone and residence and region and password
            and role):
        raise HTTPException(400, detail="Missing fields")
    if role not in (ROLE_FARMER, ROLE_BUYER):
        raise HTTPException(400, detail="Invalid role")
    if email is not None and not is_valid_email(email):
        raise HTTPException(400, detail="Invalid email address")
    check_password_policy(password)

    if role == ROLE_FARMER:
        profile: Any = Farmer(
            farm_name=_text(payload, "farmName"),
            region=region,
            residence=residence,
            farm_size=_text(payload, "farmSize"),
            years_farming=_years(payload.get("yearsFarming")),
            certifications=as_list(
                "certifications", payload.get("certifications") or []
            ),
        )
    else:
        profile = Buyer(
            company_name=_text(payload, "companyName"),
            business_type=_text(payload, "businessType"),
            location=residence,
            buyer_type=_text(payload, "buyerType"),
            preferred_regions=as_list(
                "preferredRegions", payload.get("preferredRegions") or []
            ),
        )

    conds = [User.phone == phone]
    if email is not None:
        conds.append(func.lower(User.email) == email)
    existing = (await db.execute(
        select(User.id).where(or_(*conds)).limit(1)
    )).first()
    if existing is not None:
        raise HTTPException(400, detail="User already exists")

    user = User(
        full_name=full_name,
        phone=phone,
        email=email,
        residence=residence,
        region=region,
        password_hash=hash_password(password),
        role=role,
        is_verified=False,
    )
    db.add(user)
    try:
        await db.flush()
        profile.user_id = user.id
        db.add(profile)
        await db.commit()
    except IntegrityError:
        # a concurrent registration won the unique phone/email race
        await db.rollback()
        raise HTTPException(400, detail="User already exists")
    logger.info("registered %s user id=%s", role, user.id)
    return await load_user(db, user.id)


async def authenticate(
    db: AsyncSession,
    *,
    email: Optional[str],
    phone: Optional[str],
    password: Optional[str],
) -> User:
    if not password or (not email and not phone):
        raise HTTPException(
            400, detail="Email/phone and password are required"
        )
    if not all(isinstance(v, str) for v in (email or "", phone or "", password)):
        raise HTTPException(400, detail="Invalid data types")
    if email:
        user = (await db.execute(
            select(User)
            .where(func.lower(User.email) == email.strip().lower())
            .options(*WITH_PROFILES)
            .order_by(User.id).limit(1)
        )).scalar_one_or_none()
    else:
        user = await find_by_phone(db, phone)

    if user is None or not verify_password(password, user.password_hash):
        raise HTTPException(401, detail="Invalid email/phone or password")
    return user


async def reset_password(
    db: AsyncSession, phone: Optional[str], new_password: Optional[str]
) -> User:
    if not phone or not new_password:
        raise HTTPException(400, detail="Missing fields")
    if not isinstance(phone, str) or not isinstance(new_password, str):
        raise HTTPException(400, detail="Invalid data types")
    check_password_policy(new_password)
    user = (await db.execute(
        select(User).where(User.phone == phone.strip())
    )).scalar_one_or_none()
    if user is None:
        raise HTTPException(404, detail="User not found")
    user.password_hash = hash_password(new_password)
    await db.commit()
    return user


# ----------------------------
# Profiles
# ----------------------------
def _apply(obj: Any, payload: Dict[str, Any], mapping: Dict[str, str]) -> None:
    for key, column in mapping.items():
        if key in payload and payload[key] is not None:
            setattr(obj, column, payload[key])


async def _check_contact_free(
    db: AsyncSession, user: User, payload: Dict[str, Any]
) -> None:
    """Normalise email/phone in the payload and refuse ones held by others."""
    conds = []
    if payload.get("email") is not None:
        email = _email(payload)
        if email is not None and not is_valid_email(email):
            raise HTTPException(400, detail="Invalid email address")
        payload["email"] = email
        if email is not None:
            conds.append(func.lower(User.email) == email)
    if payload.get("phone") is not None:
        phone = _text(payload, "phone")
        if not phone:
            raise HTTPException(400, detail="Phone must not be empty")
        payload["phone"] = phone
        conds.append(User.phone == phone)
    if not conds:
        return
    taken = (await db.execute(
        select(User.id).where(or_(*conds), User.id != user.id).limit(1)
    )).first()
    if taken is not None:
        raise HTTPException(400, detail="Phone or email already in use")


def _apply_lists(
    obj: Any, payload: Dict[str, Any], mapping: Dict[str, str]
) -> None:
    for key, column in mapping.items():
        if payload.get(key) is not None:
            setattr(obj, column, as_list(key, payload[key]))


async def _commit_profile(db: AsyncSession) -> None:
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(400, detail="Phone or email already in use")


async def update_buyer_profile(
    db: AsyncSession, user_id: int, payload: Dict[str, Any]
) -> User:
    user = await load_user(db, user_id)
    if user is None or user.buyer is None:
        raise HTTPException(404, detail="Buyer not found")
    payload = dict(payload)
    await _check_contact_free(db, user, payload)
    _apply(user, payload, {
        "fullName": "full_name", "phone": "phone", "email": "email",
    })
    _apply(user.buyer, payload, {
        "companyName": "company_name",
        "businessType": "business_type",
        "location": "location",
        "website": "website",
        "buyerType": "buyer_type",
        "taxId": "tax_id",
        "annualPurchaseCapacity": "annual_purchase_capacity",
    })
    _apply_lists(user.buyer, payload, {"preferredRegions": "preferred_regions"})
    ts = now_ts()
    user.updated_at = ts
    user.buyer.updated_at = ts
    await _commit_profile(db)
    return user


async def update_farmer_profile(
    db: AsyncSession, user_id: int, payload: Dict[str, Any]
) -> User:
    user = await load_user(db, user_id)
    if user is None or user.farmer is None:
        raise HTTPException(404, detail="Farmer not found")

    data = dict(payload)
    # the dashboard form speaks camelCase and calls years "experience"
    for camel, snake in (("farmName", "farm_name"), ("farmSize", "farm_size"),
                         ("experience", "years_farming"),
                         ("yearsFarming", "years_farming"),
                         ("profileImageUrl", "profile_image_url"),
                         ("fullName", "fullname")):
        if camel in data and snake not in data:
            data[snake] = data[camel]
    years = _years(data.get("years_farming"))
    if years is None:
        data.pop("years_farming", None)
    else:
        data["years_farming"] = years
    await _check_contact_free(db, user, data)

    _apply(user.farmer, data, {
        "farm_name": "farm_name",
        "region": "region",
        "residence": "residence",
        "farm_size": "farm_size",
        "years_farming": "years_farming",
        "profile_image_url": "profile_image_url",
    })
    _apply_lists(user.farmer, data, {"certifications": "certifications"})
    _apply(user, data, {
        "fullname": "full_name", "email": "email", "phone": "phone",
    })
    ts = now_ts()
    user.updated_at = ts
    user.farmer.updated_at = ts
    await _commit_profile(db)
    return user


async def farmer_counts(db: AsyncSession, farmer_id: int) -> Dict[str, int]:
    products = (await db.execute(
        select(func.count(Product.id)).where(Product.farmer_id == farmer_id)
    )).scalar_one()
    orders = (await db.execute(
        select(func.count(Order.id)).where(
            Order.farmer_id == farmer_id, Order.status.notin_(NOT_PLACED)
        )
    )).scalar_one()
    return {"total_products": int(products), "total_orders": int(orders)}
