"""Async SQLAlchemy engine for the durable record store.

Provides:
- Base: Declarative base for the store tables
- get_engine(): Lazy engine singleton, or None when DATABASE_URL is unset
- close_db(): Dispose of the engine
"""

from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.dealsync.config import get_settings

logger = structlog.get_logger(__name__)

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine | None:
    """Get or create the async engine singleton.

    Returns None when no DATABASE_URL is configured; callers degrade to
    their in-memory paths.
    """
    global _engine
    if _engine is None:
        settings = get_settings()
        if not settings.DATABASE_URL:
            return None

        kwargs: dict = {"echo": False}
        if settings.DATABASE_URL.startswith("postgresql"):
            kwargs.update(pool_size=10, max_overflow=5, pool_pre_ping=True)

        _engine = create_async_engine(settings.DATABASE_URL, **kwargs)
        logger.info("database.engine_created", dialect=_engine.dialect.name)

    return _engine


# ── Declarative Base ────────────────────────────────────────────────────────


class Base(DeclarativeBase):
    """Base class for the record store tables."""


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
