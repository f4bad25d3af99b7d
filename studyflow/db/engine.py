"""Async SQLAlchemy engine and session factory.

When DATABASE_URL is configured, provides:
- async engine for PostgreSQL via asyncpg
- async session factory for request-scoped sessions
- FastAPI lifespan hook for startup/shutdown
- translate_store_errors(), which turns connectivity failures into
  StoreUnavailable so callers see a retriable error kind

When DATABASE_URL is None, engine and async_session_factory are None
and the app falls back to in-memory repositories.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import asynccontextmanager, contextmanager

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from studyflow.core.config import SETTINGS
from studyflow.core.errors import StoreUnavailable

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all table models."""


if SETTINGS.database_url:
    engine = create_async_engine(
        SETTINGS.database_url,
        echo=SETTINGS.is_dev,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
    )
    async_session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
else:
    engine = None
    async_session_factory = None


@contextmanager
def translate_store_errors(operation: str) -> Iterator[None]:
    """Re-raise connection-level database failures as StoreUnavailable."""
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        logger.error("Store unavailable during %s: %s", operation, e.__class__.__name__)
        raise StoreUnavailable(f"store unavailable during {operation}") from e


@asynccontextmanager
async def lifespan_db():
    """Startup/shutdown hook for the database engine."""
    if engine is None:
        logger.info("No DATABASE_URL configured, using in-memory repositories")
        yield
        return

    logger.info("Database engine created: %s", engine.url.render_as_string(hide_password=True))
    yield
    await engine.dispose()
    logger.info("Database engine disposed")
