"""Dashboard classification: which bucket a proposal card falls in for a viewer.

Derived purely from the proposal, the viewer and the wall clock; nothing here
writes. The same rules drive the full listing and a single card.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Literal

from pydantic import BaseModel, Field

from council.config import Settings
from council.core.lifecycle import current_counts, voting_target
from council.core.tally import majority_passes
from council.models.proposal import PASSED_STATUSES, Proposal

Bucket = Literal[
    "mandatory-active",
    "withdrawn",
    "scribe-urgent",
    "expired",
    "urgent",
    "voted",
    "active",
]

OPEN_BUCKETS = frozenset({"mandatory-active", "urgent", "voted", "active"})

DISPLAY_STYLES: dict[str, str] = {
    "mandatory-active": "mandatory",
    "withdrawn": "muted",
    "scribe-urgent": "alert-pulse",
    "expired": "closed",
    "urgent": "alert",
    "voted": "highlight",
    "active": "default",
}

RESULT_LABELS: dict[str, str] = {
    "passed": "PASSED",
    "passedEarly": "PASSED (Early)",
    "failed": "FAILED",
    "failedEarly": "FAILED (Early)",
    "withdrawn": "WITHDRAWN",
}


class Classification(BaseModel):
    bucket: Bucket
    display_style: str


def classify(
    proposal: Proposal,
    viewer: str,
    now: datetime,
    settings: Settings | None = None,
) -> Classification:
    """First matching rule wins:

    1. mandatory and still open → mandatory-active
    2. withdrawn → withdrawn
    3. window closed → scribe-urgent for the scribe on a passed law left
       unrecorded longer than the review grace, else expired
    4. less than the urgent window left → urgent
    5. viewer already voted on the current target → voted
    6. active
    """
    settings = settings or Settings()
    bucket: Bucket
    if proposal.is_mandatory and proposal.expiry_date > now:
        bucket = "mandatory-active"
    elif proposal.status == "withdrawn":
        bucket = "withdrawn"
    elif proposal.expiry_date <= now:
        overdue = now - proposal.expiry_date > timedelta(days=settings.scribe_review_days)
        if (
            viewer == settings.scribe_province
            and proposal.status in PASSED_STATUSES
            and proposal.added_to_law_book_date is None
            and overdue
        ):
            bucket = "scribe-urgent"
        else:
            bucket = "expired"
    elif proposal.expiry_date - now < timedelta(hours=settings.urgent_window_hours):
        bucket = "urgent"
    elif viewer in voting_target(proposal).votes:
        bucket = "voted"
    else:
        bucket = "active"
    return Classification(bucket=bucket, display_style=DISPLAY_STYLES[bucket])


def result_label(
    proposal: Proposal,
    now: datetime,
    weights: Mapping[str, float],
) -> str | None:
    """PASSED / FAILED style label, or None while voting is still open.

    A proposal past its window that nobody has resolved yet gets an ad-hoc
    result from the current weighted ballots; ties fail.
    """
    if proposal.status in RESULT_LABELS:
        return RESULT_LABELS[proposal.status]
    if proposal.expiry_date > now:
        return None
    return "PASSED" if majority_passes(current_counts(proposal, weights)) else "FAILED"


def time_remaining(expiry: datetime, now: datetime) -> str:
    """Human countdown: ``Expired``, ``2d 5h``, ``5h 12m`` or ``42m``."""
    remaining = expiry - now
    if remaining <= timedelta(0):
        return "Expired"
    total_minutes = int(remaining.total_seconds() // 60)
    days, rest = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(rest, 60)
    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


class ProposalCard(BaseModel):
    proposal: Proposal
    bucket: Bucket
    display_style: str
    time_remaining: str
    result: str | None = None


class Dashboard(BaseModel):
    active: list[ProposalCard] = Field(default_factory=list)
    recent_closed: list[ProposalCard] = Field(default_factory=list)
    older_closed: list[ProposalCard] = Field(default_factory=list)


def build_card(
    proposal: Proposal,
    viewer: str,
    now: datetime,
    weights: Mapping[str, float],
    settings: Settings | None = None,
) -> ProposalCard:
    classification = classify(proposal, viewer, now, settings)
    return ProposalCard(
        proposal=proposal,
        bucket=classification.bucket,
        display_style=classification.display_style,
        time_remaining=time_remaining(proposal.expiry_date, now),
        result=result_label(proposal, now, weights),
    )


def build_dashboard(
    proposals: list[Proposal],
    viewer: str,
    now: datetime,
    weights: Mapping[str, float],
    *,
    mine_only: bool = False,
    settings: Settings | None = None,
) -> Dashboard:
    """Group proposals into open, recently closed and older closed sections.

    Open mandatory proposals lead; everything else is newest first. Closed
    proposals created more than ``older_closed_days`` ago go to the older
    section.
    """
    settings = settings or Settings()
    if mine_only:
        proposals = [p for p in proposals if p.proposer_province == viewer]

    ordered = sorted(proposals, key=lambda p: p.date_created, reverse=True)
    ordered.sort(key=lambda p: not (p.is_mandatory and p.expiry_date > now))

    cutoff = now - timedelta(days=settings.older_closed_days)
    dashboard = Dashboard()
    for proposal in ordered:
        card = build_card(proposal, viewer, now, weights, settings)
        if card.bucket in OPEN_BUCKETS:
            dashboard.active.append(card)
        elif proposal.date_created < cutoff:
            dashboard.older_closed.append(card)
        else:
            dashboard.recent_closed.append(card)
    return dashboard
