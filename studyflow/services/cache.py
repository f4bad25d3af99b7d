"""Read-through cache for per-participant navigation state.

Flow:  GET /v1/modules -> cache -> hit  -> return
                               -> miss -> AccessController -> populate -> return

Two invalidation strategies cover each other:

  1. TTL (NAVIGATION_CACHE_TTL): every entry expires on its own, so a
     missed invalidation can only serve stale navigation for that long.
  2. Explicit delete: every successful start/save/complete and every
     consent submission deletes ``navigation:{user_id}`` immediately.

The cache is an optimisation only.  A Redis error is logged and treated
as a miss; it never fails the request.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from studyflow.core.metrics import CACHE_OPERATIONS
from studyflow.db.redis import redis_pool

logger = logging.getLogger(__name__)


def navigation_key(user_id: str) -> str:
    return f"navigation:{user_id}"


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a cached value.  Returns None on cache miss."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None:
        """Explicitly invalidate a cached entry."""
        ...


class InMemoryCacheService:
    """In-memory cache for dev and tests.  No TTL enforcement.

    The autouse fixture in conftest.py clears the store between tests.
    """

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        value = self._store.get(key)
        CACHE_OPERATIONS.labels(operation="hit" if value is not None else "miss").inc()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store[key] = value

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()


class RedisCacheService:
    """Redis-backed cache shared across all API instances."""

    _PREFIX = "cache:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        try:
            value = await self._redis.get(f"{self._PREFIX}{key}")
        except Exception:
            logger.warning("Cache read failed key=%s; treating as miss", key, exc_info=True)
            CACHE_OPERATIONS.labels(operation="error").inc()
            return None
        CACHE_OPERATIONS.labels(operation="hit" if value is not None else "miss").inc()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)
        except Exception:
            logger.warning("Cache write failed key=%s", key, exc_info=True)
            CACHE_OPERATIONS.labels(operation="error").inc()

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(f"{self._PREFIX}{key}")
        except Exception:
            # A missed delete is bounded by the TTL
            logger.warning("Cache invalidation failed key=%s", key, exc_info=True)
            CACHE_OPERATIONS.labels(operation="error").inc()


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    cache_service: CacheService = RedisCacheService(redis_pool)
else:
    cache_service = InMemoryCacheService()
