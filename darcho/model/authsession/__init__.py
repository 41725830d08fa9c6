import os
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis

BACKEND = os.getenv("SESSION_BACKEND", "sql").lower()  # 'sql' | 'redis'

SESSION_TTL_SECONDS = int(
    os.getenv("SESSION_TTL_SECONDS", str(7 * 24 * 3600))
)

if BACKEND == "redis":
    from ._redis import SessionStore as _SessionStore
else:
    from ._sql import SessionStore as _SessionStore


# Factory keeps the dependency wiring constructor-agnostic:
def new_store(*, db: Optional[AsyncSession] = None,
              r: Optional[redis.Redis] = None,
              ttl_seconds: int = SESSION_TTL_SECONDS):
    if BACKEND == "redis":
        if r is None:
            raise RuntimeError("SessionStore(redis) requires r=redis.Redis")
        return _SessionStore(r=r, ttl_seconds=ttl_seconds)
    else:
        if db is None:
            raise RuntimeError("SessionStore(sql) requires db=AsyncSession")
        return _SessionStore(db=db, ttl_seconds=ttl_seconds)


SessionStore = _SessionStore
__all__ = ["SessionStore", "new_store", "BACKEND", "SESSION_TTL_SECONDS"]
