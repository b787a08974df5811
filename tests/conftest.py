"""Shared test fixtures."""

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from council.config import Settings
from council.core.provinces import seed_provinces
from council.db.engine import create_engine, get_session
from council.db.models import Base
from council.db.repository import Repository


@pytest.fixture
def settings() -> Settings:
    """Test settings with defaults."""
    return Settings(
        council_env="development",
        database_url="sqlite+aiosqlite:///:memory:",
        council_expiry_sweep_seconds=0,
    )


@pytest.fixture
async def engine() -> AsyncEngine:
    """Create an in-memory SQLite engine with all tables."""
    eng = create_engine("sqlite+aiosqlite:///:memory:")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def repo(engine: AsyncEngine) -> Repository:
    """Repository over the default twelve-province council."""
    async with get_session(engine) as session:
        repository = Repository(session)
        await seed_provinces(repository)
        yield repository
