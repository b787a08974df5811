"""Scribe queue: passed laws waiting to be copied into the law book."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Literal

from council.config import Settings
from council.core.errors import NotFound, ValidationError
from council.models.proposal import PASSED_STATUSES, Proposal

if TYPE_CHECKING:
    from council.db.repository import Repository

logger = logging.getLogger(__name__)


def pending_review(proposals: Iterable[Proposal]) -> list[Proposal]:
    """Passed, not yet recorded, oldest passage first.

    Membership does not depend on the clock; see ``review_urgency`` for that.
    """
    pending = [
        p for p in proposals if p.status in PASSED_STATUSES and p.added_to_law_book_date is None
    ]
    return sorted(pending, key=lambda p: p.expiry_date)


def review_urgency(
    proposal: Proposal,
    now: datetime,
    settings: Settings | None = None,
) -> Literal["urgent", "normal"]:
    """A law passed longer ago than ``scribe_review_days`` is urgent."""
    settings = settings or Settings()
    if now - proposal.expiry_date > timedelta(days=settings.scribe_review_days):
        return "urgent"
    return "normal"


def law_book(proposals: Iterable[Proposal]) -> list[Proposal]:
    """Laws already recorded, in legislation-number order."""
    recorded = [p for p in proposals if p.added_to_law_book_date is not None]
    return sorted(recorded, key=lambda p: (len(p.legislation_number), p.legislation_number))


async def mark_added(
    repo: Repository,
    proposal_id: str,
    now: datetime | None = None,
) -> Proposal:
    """Stamp a passed law as copied into the law book.

    Calling it again overwrites the stamp with the new time. Anything that
    did not pass is refused.
    """
    now = now or datetime.now(UTC)
    proposal = await repo.get_proposal(proposal_id)
    if proposal is None:
        raise NotFound(f"Proposal {proposal_id!r} not found")
    if proposal.status not in PASSED_STATUSES:
        raise ValidationError(
            f"Only passed laws go in the law book; proposal is {proposal.status}"
        )
    updated = proposal.model_copy(update={"added_to_law_book_date": now})
    stored = await repo.update_proposal(updated, expected_version=proposal.version)
    logger.info("law_book_recorded number=%s", stored.legislation_number)
    return stored
