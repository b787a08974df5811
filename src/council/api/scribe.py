"""Scribe API: review queue for passed laws and the law book itself."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter

from council.api.deps import BusDep, RepoDep, SettingsDep
from council.api.proposals import ActorRequest
from council.core.errors import PermissionDenied
from council.core.scribe import law_book, mark_added, pending_review, review_urgency
from council.models.proposal import PASSED_STATUSES

router = APIRouter(prefix="/api/scribe", tags=["scribe"])


def _require_scribe(province: str, scribe_province: str) -> None:
    if province != scribe_province:
        raise PermissionDenied("Only the scribe reviews passed laws")


@router.get("/pending")
async def api_pending(province: str, repo: RepoDep, settings: SettingsDep) -> dict:
    """Passed laws not yet in the law book, oldest first, with urgency."""
    _require_scribe(province, settings.scribe_province)
    now = datetime.now(UTC)
    proposals = await repo.list_proposals(statuses=PASSED_STATUSES, order_by="expiry_date")
    return {
        "data": [
            {
                "proposal": p.model_dump(mode="json"),
                "urgency": review_urgency(p, now, settings),
            }
            for p in pending_review(proposals)
        ]
    }


@router.post("/{proposal_id}/added")
async def api_mark_added(
    proposal_id: str,
    body: ActorRequest,
    repo: RepoDep,
    settings: SettingsDep,
    bus: BusDep,
) -> dict:
    """Record that a law was copied into the law book."""
    _require_scribe(body.province, settings.scribe_province)
    proposal = await mark_added(repo, proposal_id)
    await repo.commit()
    await bus.publish_proposal(proposal)
    return {"data": proposal.model_dump(mode="json")}


@router.get("/law-book")
async def api_law_book(repo: RepoDep) -> dict:
    """Every recorded law, by legislation number."""
    proposals = await repo.list_proposals(statuses=PASSED_STATUSES)
    return {"data": [p.model_dump(mode="json") for p in law_book(proposals)]}
