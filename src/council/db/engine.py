"""Async SQLAlchemy engine and session factory (SQLite-only).

Usage:
    engine = create_engine(settings.database_url)
    async with get_session(engine) as session:
        ...
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from council.core.errors import StoreUnavailable

logger = logging.getLogger(__name__)


def create_engine(database_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Enables WAL journal mode and a 15-second busy timeout so concurrent
    sessions (scheduler sweep, API requests) wait on each other instead of
    failing with "database is locked". The timeout bounds every store call.
    """
    connect_args: dict[str, object] = {"timeout": 15}

    engine = create_async_engine(database_url, echo=False, connect_args=connect_args)

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_conn: object, connection_record: object) -> None:
        cursor = dbapi_conn.cursor()  # type: ignore[union-attr]
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA busy_timeout=15000")
        cursor.close()

    return engine


# One session factory per engine instance, keyed by the sync engine identity
# so test engines stay isolated.
_session_factories: dict[int, async_sessionmaker[AsyncSession]] = {}


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Return a cached session factory bound to *engine*."""
    key = id(engine.sync_engine)
    if key not in _session_factories:
        _session_factories[key] = async_sessionmaker(engine, expire_on_commit=False)
    return _session_factories[key]


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that commits on success and rolls back on error.

    Storage I/O failures surface as the retryable ``StoreUnavailable``.
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except OperationalError as exc:
            await session.rollback()
            logger.warning("store_unavailable: %s", exc)
            raise StoreUnavailable(str(exc.orig or exc)) from exc
        except Exception:  # rollback on any error, then re-raise
            await session.rollback()
            raise


@asynccontextmanager
async def get_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session that auto-commits on success, rolls back on error."""
    async with session_scope(create_session_factory(engine)) as session:
        yield session
