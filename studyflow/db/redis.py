"""Redis connection management.

Mirrors engine.py: when REDIS_URL is configured a connection pool is
created; when it is None (local dev, tests) the navigation cache falls
back to an in-memory implementation and no Redis server is needed.

Redis holds nothing durable here.  Losing it costs a cache miss, never a
progress record or an audit event.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from studyflow.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Startup/shutdown hook for Redis, mirroring lifespan_db()."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured; navigation cache is in-memory")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        logger.exception("Redis connection failed on startup")
        # Keep serving; every cache call degrades to a miss
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
