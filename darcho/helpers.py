import time
import re
import uuid
from datetime import datetime, timezone
import hmac
from typing import Optional, Any


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def to_date(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).date().isoformat()


def month_key(ts: float) -> str:
    # "Jan 2025"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%b %Y")


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    email = email.strip()
    # simple but effective email check
    return re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email) is not None


def digits_only(phone: Optional[str]) -> str:
    return re.sub(r"\D", "", phone or "")


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


def is_number(value: Any) -> bool:
    # bool is an int subclass; a JSON true is not a quantity
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def new_order_number(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9].upper()}"


def page_params(page: int, limit: int, max_limit: int = 100) -> tuple[int, int, int]:
    page = max(1, page)
    limit = max(1, min(limit, max_limit))
    return page, limit, (page - 1) * limit


def pagination(page: int, limit: int, total: int) -> dict:
    total_pages = (total + limit - 1) // limit
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasNextPage": page < total_pages,
        "hasPrevPage": page > 1,
    }
