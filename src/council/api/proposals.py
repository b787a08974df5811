"""Proposal API endpoints: create, read, vote, end early, withdraw, amend."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from council.api.deps import BusDep, RepoDep, SettingsDep
from council.core.dashboard import classify, result_label
from council.core.errors import NotFound
from council.core.lifecycle import (
    cast_vote,
    create_budget_proposal,
    create_law_proposal,
    current_counts,
    describe_amendment,
    end_voting_early,
    preview_amendment,
    submit_amendment,
    withdraw_proposal,
)
from council.core.tally import total_weight, weight_table
from council.models.proposal import LineItem, Proposal

router = APIRouter(prefix="/api/proposals", tags=["proposals"])


# --- Request Models ---


class CreateLawRequest(BaseModel):
    province: str
    title: str
    purpose: str
    whereas_statements: list[str] = Field(default_factory=list)
    changes: str


class CreateBudgetRequest(BaseModel):
    province: str
    budget_type: str
    total_amount: float
    budget_purpose: str
    line_items: list[LineItem] = Field(default_factory=list)
    justification: str


class VoteRequest(BaseModel):
    province: str
    vote: str  # "aye", "nay" or "present"


class ActorRequest(BaseModel):
    province: str


class AmendmentRequest(BaseModel):
    province: str
    amended_text: str | None = None
    amended_line_items: list[LineItem] | None = None


# --- Helpers ---


async def _get_or_404(repo: RepoDep, proposal_id: str) -> Proposal:
    proposal = await repo.get_proposal(proposal_id)
    if proposal is None:
        raise NotFound(f"Proposal {proposal_id!r} not found")
    return proposal


def _now() -> datetime:
    return datetime.now(UTC)


# --- Endpoints ---


@router.post("/law", status_code=201)
async def api_create_law(
    body: CreateLawRequest, repo: RepoDep, settings: SettingsDep, bus: BusDep
) -> dict:
    """Submit a new law proposal."""
    proposal = await create_law_proposal(
        repo,
        body.province,
        title=body.title,
        purpose=body.purpose,
        whereas_statements=body.whereas_statements,
        changes=body.changes,
        settings=settings,
    )
    await repo.commit()
    await bus.publish_proposal(proposal, "proposal.created")
    return {"data": proposal.model_dump(mode="json")}


@router.post("/budget", status_code=201)
async def api_create_budget(
    body: CreateBudgetRequest, repo: RepoDep, settings: SettingsDep, bus: BusDep
) -> dict:
    """Submit a new budget proposal."""
    proposal = await create_budget_proposal(
        repo,
        body.province,
        budget_type=body.budget_type,
        total_amount=body.total_amount,
        budget_purpose=body.budget_purpose,
        line_items=body.line_items,
        justification=body.justification,
        settings=settings,
    )
    await repo.commit()
    await bus.publish_proposal(proposal, "proposal.created")
    return {"data": proposal.model_dump(mode="json")}


@router.get("")
async def api_list_proposals(repo: RepoDep, status: str | None = None) -> dict:
    """List proposals, newest first, optionally filtered by status."""
    statuses = [status] if status else None
    proposals = await repo.list_proposals(statuses=statuses)
    return {"data": [p.model_dump(mode="json") for p in proposals]}


@router.get("/{proposal_id}")
async def api_get_proposal(
    proposal_id: str,
    repo: RepoDep,
    settings: SettingsDep,
    province: str | None = None,
) -> dict:
    """Proposal detail: current weighted tally, amendment diff and result."""
    proposal = await _get_or_404(repo, proposal_id)
    weights = weight_table(await repo.get_provinces())
    now = _now()
    amendment = proposal.active_amendment
    data = {
        "proposal": proposal.model_dump(mode="json"),
        "voting_on": "amendment" if amendment else "proposal",
        "tally": current_counts(proposal, weights).model_dump(),
        "total_weight": total_weight(weights),
        "voting_open": proposal.status == "active" and proposal.expiry_date > now,
        "result": result_label(proposal, now, weights),
        "amendment_diff": describe_amendment(amendment).model_dump(mode="json")
        if amendment
        else None,
    }
    if province:
        data["classification"] = classify(proposal, province, now, settings).model_dump()
    return {"data": data}


@router.post("/{proposal_id}/votes", response_model=None)
async def api_cast_vote(
    proposal_id: str,
    body: VoteRequest,
    repo: RepoDep,
    settings: SettingsDep,
    bus: BusDep,
) -> dict | JSONResponse:
    """Cast or change a ballot. Answers 409 if the window had already closed."""
    outcome = await cast_vote(repo, proposal_id, body.province, body.vote, settings=settings)
    if outcome.closed:
        # The resolution is kept; only the ballot was refused.
        await repo.commit()
        await bus.publish_proposal(outcome.proposal, "proposal.resolved")
        return JSONResponse(
            status_code=409,
            content={
                "error": "VotingClosed",
                "detail": outcome.message,
                "status": outcome.proposal.status,
                "retryable": False,
            },
        )
    await repo.commit()
    await bus.publish_proposal(outcome.proposal)
    return {"data": outcome.model_dump(mode="json")}


@router.post("/{proposal_id}/end-early")
async def api_end_early(
    proposal_id: str,
    body: ActorRequest,
    repo: RepoDep,
    settings: SettingsDep,
    bus: BusDep,
) -> dict:
    """King closes voting now against the supermajority bar."""
    proposal = await end_voting_early(repo, proposal_id, body.province, settings=settings)
    await repo.commit()
    await bus.publish_proposal(proposal, "proposal.resolved")
    return {"data": proposal.model_dump(mode="json")}


@router.post("/{proposal_id}/withdraw")
async def api_withdraw(
    proposal_id: str,
    body: ActorRequest,
    repo: RepoDep,
    settings: SettingsDep,
    bus: BusDep,
) -> dict:
    """Proposer withdraws their proposal."""
    proposal = await withdraw_proposal(repo, proposal_id, body.province, settings=settings)
    await repo.commit()
    await bus.publish_proposal(proposal, "proposal.resolved")
    return {"data": proposal.model_dump(mode="json")}


@router.post("/{proposal_id}/amendments", status_code=201)
async def api_submit_amendment(
    proposal_id: str,
    body: AmendmentRequest,
    repo: RepoDep,
    settings: SettingsDep,
    bus: BusDep,
) -> dict:
    """Submit an amendment. Voting on the proposal starts over."""
    proposal = await submit_amendment(
        repo,
        proposal_id,
        body.province,
        amended_text=body.amended_text,
        amended_line_items=body.amended_line_items,
        settings=settings,
    )
    await repo.commit()
    await bus.publish_proposal(proposal)
    return {"data": proposal.model_dump(mode="json")}


@router.post("/{proposal_id}/amendments/preview")
async def api_preview_amendment(
    proposal_id: str,
    body: AmendmentRequest,
    repo: RepoDep,
    settings: SettingsDep,
) -> dict:
    """Diff a draft amendment against the current ballot without saving it."""
    proposal = await _get_or_404(repo, proposal_id)
    view = preview_amendment(
        proposal,
        amended_text=body.amended_text,
        amended_line_items=body.amended_line_items,
        max_depth=settings.max_amendment_depth,
    )
    return {"data": view.model_dump(mode="json")}
