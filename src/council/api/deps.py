"""FastAPI dependency injection for sessions, repository, settings and the event bus."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from council.config import Settings
from council.core.event_bus import EventBus
from council.db.engine import create_session_factory, session_scope
from council.db.repository import Repository


async def get_engine(request: Request) -> AsyncEngine:
    """Get the database engine from app state."""
    return request.app.state.engine


async def get_session(
    engine: Annotated[AsyncEngine, Depends(get_engine)],
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that commits after the handler returns, rolls back on error."""
    async with session_scope(create_session_factory(engine)) as session:
        yield session


async def get_repo(session: Annotated[AsyncSession, Depends(get_session)]) -> Repository:
    """Get a repository instance bound to the current session."""
    return Repository(session)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.event_bus


RepoDep = Annotated[Repository, Depends(get_repo)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
BusDep = Annotated[EventBus, Depends(get_event_bus)]
