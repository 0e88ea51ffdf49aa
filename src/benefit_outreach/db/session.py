"""Async engine and session handling.

One engine per process, created from settings on first use. Request
handlers get a session through ``get_db``; scheduler jobs open their own
sessions from ``get_session_factory()`` one practice at a time.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from benefit_outreach.config import get_settings
from benefit_outreach.db.base import Base

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_options(url: str) -> dict[str, Any]:
    parsed = make_url(url)
    if not parsed.drivername.startswith("sqlite"):
        return {"pool_size": 5, "max_overflow": 10, "pool_recycle": 1800, "pool_pre_ping": True}

    options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if parsed.database in (None, "", ":memory:"):
        # Every session must see the same in-memory database
        options["poolclass"] = StaticPool
    else:
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
    return options


def _sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Services keep reading ORM rows after committing them
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        database = get_settings().database
        _engine = create_async_engine(database.url, echo=database.echo, **_engine_options(database.url))
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = _sessionmaker(get_engine())
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, rolled back on error."""
    async with get_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def _create_tables(engine: AsyncEngine) -> None:
    import benefit_outreach.db.models  # noqa: F401  registers tables on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> None:
    """Create missing tables."""
    await _create_tables(get_engine())


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def create_test_engine(url: str = "sqlite+aiosqlite:///:memory:") -> AsyncEngine:
    """Engine with all tables created, for tests."""
    engine = create_async_engine(url, **_engine_options(url))
    await _create_tables(engine)
    return engine


def get_test_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return _sessionmaker(engine)
