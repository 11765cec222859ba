# src/CMS/db/session.py
from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from CMS.core.config import settings

# ---------------------------------------------------------------------------
# Engine configuration
# ---------------------------------------------------------------------------

# Use NullPool in tests (or when explicitly requested) to avoid sharing the same
# asyncpg connection across tasks.
USE_NULLPOOL = (
    os.getenv("SQLALCHEMY_NULLPOOL", "0") == "1"
    or bool(getattr(settings, "TESTING", False))
)

_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None


def _build_engine() -> AsyncEngine:
    kwargs: dict = {
        "echo": bool(settings.DB_ECHO),
        "pool_pre_ping": True,  # protects against stale connections
    }
    if USE_NULLPOOL:
        kwargs["poolclass"] = NullPool
    return create_async_engine(settings.DATABASE_URL, **kwargs)


def get_engine() -> AsyncEngine:
    """Expose the engine (e.g., for health checks / create_all)."""
    global _engine
    if _engine is None:
        _engine = _build_engine()
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Return the app-wide async sessionmaker."""
    global _sessionmaker
    if _sessionmaker is None:
        _sessionmaker = async_sessionmaker(
            bind=get_engine(),
            expire_on_commit=False,
            class_=AsyncSession,
        )
    return _sessionmaker


async def dispose_engine() -> None:
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessionmaker = None


# ---------------------------------------------------------------------------
# FastAPI dependencies
#   - get_session: async context manager (use with `async with`)
#   - get_db: async generator (use with `Depends(get_db)`)
# ---------------------------------------------------------------------------

@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with get_sessionmaker()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with get_sessionmaker()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
