"""Async SQLAlchemy engine, declarative base, and session factories.

Provides:
- Base: Declarative base for all tables (users, meetings, participants, sessions)
- get_session_factory(): async_sessionmaker bound to the engine singleton
- init_db() / close_db(): lifespan hooks for table creation and disposal

Deployed databases are migrated with Alembic (alembic/versions); init_db()
only creates tables that are missing.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from src.convene.config import get_settings

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        kwargs: dict[str, Any] = {"echo": settings.DATABASE_ECHO}
        if not settings.DATABASE_URL.startswith("sqlite"):
            kwargs.update(pool_size=20, max_overflow=10)
        _engine = create_async_engine(settings.DATABASE_URL, **kwargs)

        if settings.DATABASE_URL.startswith("sqlite"):
            # SQLite ignores FOR UPDATE; BEGIN IMMEDIATE takes the write lock
            # up front instead, so meeting scopes stay serialized.
            @event.listens_for(_engine.sync_engine, "connect")
            def _disable_pysqlite_autobegin(dbapi_conn: Any, connection_record: Any) -> None:
                dbapi_conn.isolation_level = None

            @event.listens_for(_engine.sync_engine, "begin")
            def _emit_begin(conn: Any) -> None:
                conn.exec_driver_sql("BEGIN IMMEDIATE")

    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory used by the repositories."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


# ── Declarative Base ────────────────────────────────────────────────────────


class Base(DeclarativeBase):
    """Base class for all ORM models."""


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db() -> None:
    """Create all tables if they don't exist."""
    # Import models so they register on Base.metadata
    from src.convene.meetings import models as _meeting_models  # noqa: F401
    from src.convene.models import user as _user_models  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None
