"""Scheduled expiry sweep, run by APScheduler from the app lifespan.

Proposals resolve lazily when someone votes after the window closed. The
sweep resolves the rest so the dashboard and scribe queue catch up without
waiting for a ballot.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from council.config import Settings
from council.core.errors import CouncilError
from council.core.event_bus import EventBus
from council.core.lifecycle import resolve_expired
from council.db.engine import get_session
from council.db.repository import Repository

logger = logging.getLogger(__name__)


async def tick_expiry(
    engine: AsyncEngine,
    event_bus: EventBus | None = None,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> int:
    """Resolve every expired active proposal and publish the new snapshots.

    Returns the number of proposals resolved. Errors are logged, never
    raised, so the scheduler keeps running.
    """
    now = now or datetime.now(UTC)
    try:
        async with get_session(engine) as session:
            repo = Repository(session)
            resolved = await resolve_expired(repo, settings=settings, now=now)
    except (CouncilError, SQLAlchemyError):
        logger.exception("tick_expiry_error")
        return 0

    if event_bus is not None:
        for proposal in resolved:
            await event_bus.publish_proposal(proposal, "proposal.resolved")
    if resolved:
        logger.info("tick_expiry resolved=%d", len(resolved))
    return len(resolved)
