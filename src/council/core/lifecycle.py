"""Proposal lifecycle: creation, weighted voting, early close, withdrawal, amendments.

Status only ever leaves ``active``::

    active ──cast_vote (expired) / end_voting_early──► passed | failed | passedEarly | failedEarly
      └──── withdraw_proposal ───────────────────────► withdrawn

Every mutation re-reads the proposal, applies the change to a copy and writes
it back with a compare-and-swap on ``version``. When another writer got there
first the whole read-apply-write is repeated, so two provinces voting at the
same moment never overwrite each other's ballot.

Database access goes through Repository; the rules themselves are pure.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Literal, TypeVar

from pydantic import BaseModel

from council.config import Settings
from council.core.diff import (
    DiffLine,
    LineItemChange,
    RenderedLine,
    diff_line_items,
    diff_lines,
    render_diff,
)
from council.core.errors import (
    AmendmentDepthExceeded,
    ConcurrentUpdate,
    NotFound,
    PermissionDenied,
    ValidationError,
    VotingClosed,
)
from council.core.tally import (
    majority_passes,
    meets_supermajority,
    tally_votes,
    total_weight,
    weight_table,
)
from council.models.proposal import (
    VOTE_CHOICES,
    Amendment,
    BudgetContent,
    LawContent,
    LineItem,
    Proposal,
    VoteCounts,
)

if TYPE_CHECKING:
    from council.db.repository import Repository

logger = logging.getLogger(__name__)

MAX_WHEREAS_STATEMENTS = 10
MAX_LINE_ITEM_DESCRIPTION = 100
SYNOPSIS_LENGTH = 150

T = TypeVar("T")
Mutation = Callable[[Proposal, Mapping[str, float]], tuple[Proposal | None, T]]


def _now() -> datetime:
    return datetime.now(UTC)


# --- Validation ---


def validate_law_content(content: LawContent) -> None:
    """Title, purpose and changes are required; 1-10 whereas statements, none blank."""
    if not content.title.strip() or not content.purpose.strip() or not content.changes.strip():
        raise ValidationError("Title, purpose and changes are required.")
    if not content.whereas_statements:
        raise ValidationError('At least one "Whereas" statement is required.')
    if len(content.whereas_statements) > MAX_WHEREAS_STATEMENTS:
        raise ValidationError(
            f'No more than {MAX_WHEREAS_STATEMENTS} "Whereas" statements are allowed.'
        )
    if any(not s.strip() for s in content.whereas_statements):
        raise ValidationError('All "Whereas" statements must be filled.')


def validate_line_items(items: list[LineItem]) -> None:
    if not items:
        raise ValidationError("A budget needs at least one line item.")
    for item in items:
        if not item.title.strip():
            raise ValidationError("Every line item needs a title.")
        if item.amount <= 0:
            raise ValidationError(f"Line item {item.title!r} must have a positive amount.")
        if not item.description.strip():
            raise ValidationError(f"Line item {item.title!r} needs a description.")
        if len(item.description) > MAX_LINE_ITEM_DESCRIPTION:
            raise ValidationError(
                f"Line item {item.title!r} description exceeds "
                f"{MAX_LINE_ITEM_DESCRIPTION} characters."
            )


def validate_budget_content(content: BudgetContent) -> None:
    if (
        not content.budget_type.strip()
        or not content.budget_purpose.strip()
        or not content.justification.strip()
    ):
        raise ValidationError("Budget type, purpose and justification are required.")
    if content.total_amount <= 0:
        raise ValidationError("Total amount must be a positive number.")
    validate_line_items(content.line_items)


def _synopsis(text: str) -> str:
    if len(text) > SYNOPSIS_LENGTH:
        return text[:SYNOPSIS_LENGTH] + "..."
    return text


def format_legislation_number(number: int, width: int = 3) -> str:
    return str(number).zfill(width)


# --- Voting target ---


def voting_target(proposal: Proposal) -> Proposal | Amendment:
    """Ballots go to the active amendment while there is one, else to the proposal."""
    return proposal.active_amendment or proposal


def current_content(proposal: Proposal) -> str | list[LineItem]:
    """The law text or line items currently on the ballot."""
    amendment = proposal.active_amendment
    if isinstance(proposal.content, LawContent):
        if amendment is not None and amendment.amended_text is not None:
            return amendment.amended_text
        return proposal.content.changes
    if amendment is not None and amendment.amended_line_items is not None:
        return list(amendment.amended_line_items)
    return list(proposal.content.line_items)


def current_counts(proposal: Proposal, weights: Mapping[str, float]) -> VoteCounts:
    """Tally of the current voting target under the given weight table."""
    return tally_votes(voting_target(proposal).votes, weights)


# --- Read-modify-write ---


async def _load(repo: Repository, proposal_id: str) -> Proposal:
    proposal = await repo.get_proposal(proposal_id)
    if proposal is None:
        raise NotFound(f"Proposal {proposal_id!r} not found")
    return proposal


async def _read_modify_write(
    repo: Repository,
    proposal_id: str,
    mutate: Mutation[T],
    retries: int,
) -> tuple[Proposal, T]:
    """Re-read, apply ``mutate`` and compare-and-swap, retrying lost races.

    ``mutate`` returns ``(None, result)`` to skip the write. Domain errors it
    raises propagate untouched and nothing is written.
    """
    for attempt in range(1, retries + 1):
        proposal = await _load(repo, proposal_id)
        weights = weight_table(await repo.get_provinces())
        updated, result = mutate(proposal, weights)
        if updated is None:
            return proposal, result
        try:
            stored = await repo.update_proposal(updated, expected_version=proposal.version)
        except ConcurrentUpdate:
            logger.info("proposal_write_conflict id=%s attempt=%d", proposal_id, attempt)
            continue
        return stored, result
    raise ConcurrentUpdate(
        f"Proposal {proposal_id!r} kept changing; gave up after {retries} attempts"
    )


def _recount(proposal: Proposal, weights: Mapping[str, float]) -> None:
    """Recompute every cached count from its vote map, in place."""
    proposal.vote_counts = tally_votes(proposal.votes, weights)
    if proposal.amendment is not None:
        proposal.amendment.vote_counts = tally_votes(proposal.amendment.votes, weights)


def _resolve_by_expiry(proposal: Proposal, weights: Mapping[str, float]) -> Proposal:
    resolved = proposal.model_copy(deep=True)
    _recount(resolved, weights)
    resolved.status = "passed" if majority_passes(current_counts(resolved, weights)) else "failed"
    return resolved


# --- Creation ---


async def create_proposal(
    repo: Repository,
    content: LawContent | BudgetContent,
    proposer_province: str,
    *,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> Proposal:
    """Validate and store a new active proposal with the next legislation number.

    The number is the current maximum plus one. Two creations racing for the
    same number are stopped by the unique constraint; the loser gets a
    retryable ``ConcurrentUpdate``.
    """
    settings = settings or Settings()
    now = now or _now()
    if isinstance(content, LawContent):
        validate_law_content(content)
    else:
        validate_budget_content(content)

    if await repo.get_province(proposer_province) is None:
        raise NotFound(f"Province {proposer_province!r} not found")

    number = format_legislation_number(
        await repo.max_legislation_number() + 1, settings.legislation_number_width
    )
    if isinstance(content, LawContent):
        title = content.title
        synopsis = _synopsis(content.purpose)
    else:
        title = f"Budget for {content.budget_type} - #{number}"
        synopsis = _synopsis(content.budget_purpose)

    proposal = Proposal(
        legislation_number=number,
        content=content,
        title=title,
        synopsis=synopsis,
        proposer_province=proposer_province,
        date_created=now,
        expiry_date=now + timedelta(hours=settings.proposal_voting_hours),
        is_mandatory=proposer_province == settings.admin_province,
    )
    stored = await repo.add_proposal(proposal)
    logger.info(
        "proposal_created number=%s kind=%s proposer=%s",
        number,
        content.kind,
        proposer_province,
    )
    return stored


async def create_law_proposal(
    repo: Repository,
    proposer_province: str,
    title: str,
    purpose: str,
    whereas_statements: list[str],
    changes: str,
    **kwargs: object,
) -> Proposal:
    content = LawContent(
        title=title,
        purpose=purpose,
        whereas_statements=list(whereas_statements),
        changes=changes,
    )
    return await create_proposal(
        repo, content, proposer_province, **kwargs  # type: ignore[arg-type]
    )


async def create_budget_proposal(
    repo: Repository,
    proposer_province: str,
    budget_type: str,
    total_amount: float,
    budget_purpose: str,
    line_items: list[LineItem],
    justification: str,
    **kwargs: object,
) -> Proposal:
    content = BudgetContent(
        budget_type=budget_type,
        total_amount=total_amount,
        budget_purpose=budget_purpose,
        line_items=[
            LineItem(
                title=item.title.strip(),
                amount=item.amount,
                description=item.description.strip(),
            )
            for item in line_items
        ],
        justification=justification,
    )
    return await create_proposal(
        repo, content, proposer_province, **kwargs  # type: ignore[arg-type]
    )


# --- Voting ---


class VoteOutcome(BaseModel):
    """Result of a ballot. ``closed`` means the window had run out and the vote was not recorded."""

    proposal: Proposal
    closed: bool = False
    target: Literal["proposal", "amendment"] | None = None
    message: str = ""


async def cast_vote(
    repo: Repository,
    proposal_id: str,
    province: str,
    choice: str,
    *,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> VoteOutcome:
    """Record (or replace) a province's ballot on the current voting target.

    If the voting window has passed while the proposal is still active, the
    proposal is resolved instead (passed iff weighted aye > nay) and the
    outcome comes back with ``closed=True``; the ballot is not recorded.
    """
    settings = settings or Settings()
    now = now or _now()
    if choice not in VOTE_CHOICES:
        raise ValidationError(f"Vote must be one of {', '.join(VOTE_CHOICES)}")
    if await repo.get_province(province) is None:
        raise NotFound(f"Province {province!r} not found")

    def mutate(
        proposal: Proposal, weights: Mapping[str, float]
    ) -> tuple[Proposal | None, str | None]:
        if now >= proposal.expiry_date and proposal.status == "active":
            return _resolve_by_expiry(proposal, weights), None
        if proposal.status != "active":
            raise VotingClosed(proposal.status)
        updated = proposal.model_copy(deep=True)
        target = updated.active_amendment
        if target is not None:
            target.votes[province] = choice  # type: ignore[assignment]
        else:
            updated.votes[province] = choice  # type: ignore[assignment]
        _recount(updated, weights)
        return updated, "amendment" if target is not None else "proposal"

    stored, target = await _read_modify_write(
        repo, proposal_id, mutate, settings.store_write_retries
    )
    if target is None:
        logger.info(
            "proposal_resolved_on_vote number=%s status=%s",
            stored.legislation_number,
            stored.status,
        )
        return VoteOutcome(
            proposal=stored,
            closed=True,
            message=f"Voting has closed. Status: {stored.status}",
        )
    logger.info(
        "vote_cast number=%s province=%s choice=%s target=%s",
        stored.legislation_number,
        province,
        choice,
        target,
    )
    return VoteOutcome(
        proposal=stored,
        target=target,  # type: ignore[arg-type]
        message=f"Voted '{choice}' on the {target}.",
    )


async def end_voting_early(
    repo: Repository,
    proposal_id: str,
    acting_province: str,
    *,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> Proposal:
    """King-only early close against the whole electorate's weight.

    Aye weight ≥ ``early_close_threshold`` × total weight of every province
    → ``passedEarly``, otherwise ``failedEarly``. Voting closes now either way.
    """
    settings = settings or Settings()
    now = now or _now()
    if acting_province != settings.king_province:
        raise PermissionDenied("Only the King may end voting early")

    def mutate(proposal: Proposal, weights: Mapping[str, float]) -> tuple[Proposal, None]:
        if proposal.status != "active":
            raise VotingClosed(proposal.status)
        updated = proposal.model_copy(deep=True)
        _recount(updated, weights)
        passed = meets_supermajority(
            current_counts(updated, weights),
            total_weight(weights),
            settings.early_close_threshold,
        )
        updated.status = "passedEarly" if passed else "failedEarly"
        updated.expiry_date = now
        return updated, None

    stored, _ = await _read_modify_write(repo, proposal_id, mutate, settings.store_write_retries)
    logger.info(
        "voting_ended_early number=%s status=%s",
        stored.legislation_number,
        stored.status,
    )
    return stored


async def withdraw_proposal(
    repo: Repository,
    proposal_id: str,
    acting_province: str,
    *,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> Proposal:
    """The proposer pulls an active proposal. Irreversible."""
    settings = settings or Settings()
    now = now or _now()

    def mutate(proposal: Proposal, weights: Mapping[str, float]) -> tuple[Proposal, None]:
        if acting_province != proposal.proposer_province:
            raise PermissionDenied("You can only withdraw proposals you have proposed.")
        if proposal.status != "active":
            raise VotingClosed(proposal.status)
        updated = proposal.model_copy(deep=True)
        updated.status = "withdrawn"
        updated.expiry_date = now
        return updated, None

    stored, _ = await _read_modify_write(repo, proposal_id, mutate, settings.store_write_retries)
    logger.info(
        "proposal_withdrawn number=%s by=%s", stored.legislation_number, acting_province
    )
    return stored


async def resolve_expired(
    repo: Repository,
    *,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> list[Proposal]:
    """Resolve every active proposal whose window has closed, as a late ballot would."""
    settings = settings or Settings()
    now = now or _now()

    def mutate(proposal: Proposal, weights: Mapping[str, float]) -> tuple[Proposal | None, bool]:
        if proposal.status != "active" or now < proposal.expiry_date:
            return None, False
        return _resolve_by_expiry(proposal, weights), True

    resolved: list[Proposal] = []
    for candidate in await repo.get_expired_active_proposals(now):
        stored, changed = await _read_modify_write(
            repo, candidate.id, mutate, settings.store_write_retries
        )
        if changed:
            logger.info(
                "proposal_resolved_on_expiry number=%s status=%s",
                stored.legislation_number,
                stored.status,
            )
            resolved.append(stored)
    return resolved


# --- Amendments ---


def _amended_payload(
    proposal: Proposal,
    amended_text: str | None,
    amended_line_items: list[LineItem] | None,
) -> tuple[str | None, list[LineItem] | None]:
    """Check the amended content matches the proposal kind and is valid."""
    if isinstance(proposal.content, LawContent):
        if amended_line_items is not None:
            raise ValidationError("A law is amended with text, not line items.")
        if amended_text is None or not amended_text.strip():
            raise ValidationError("Amendment text cannot be empty.")
        return amended_text, None
    if amended_text is not None:
        raise ValidationError("A budget is amended with line items, not text.")
    if amended_line_items is None:
        raise ValidationError("Amended line items are required.")
    validate_line_items(amended_line_items)
    return None, list(amended_line_items)


def next_amendment_depth(proposal: Proposal, max_depth: int) -> int:
    """Depth the next amendment would get; raises once the cap is reached."""
    prior = proposal.active_amendment
    if prior is None:
        return 1
    if prior.depth >= max_depth:
        raise AmendmentDepthExceeded(
            "An amendment to an amendment has already been submitted. "
            "No further amendments can be made at this time."
        )
    return prior.depth + 1


async def submit_amendment(
    repo: Repository,
    proposal_id: str,
    proposer_province: str,
    *,
    amended_text: str | None = None,
    amended_line_items: list[LineItem] | None = None,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> Proposal:
    """Put an amendment on the ballot of an active proposal.

    The new amendment is diffed against whatever is currently on the ballot
    (the active amendment, or the original). A prior amendment is marked
    superseded and kept in ``amendment_history``. The parent proposal's own
    votes are cleared on every submission.
    """
    settings = settings or Settings()
    now = now or _now()
    if await repo.get_province(proposer_province) is None:
        raise NotFound(f"Province {proposer_province!r} not found")

    def mutate(proposal: Proposal, weights: Mapping[str, float]) -> tuple[Proposal, None]:
        if proposal.status != "active":
            raise VotingClosed(proposal.status)
        text, items = _amended_payload(proposal, amended_text, amended_line_items)
        depth = next_amendment_depth(proposal, settings.max_amendment_depth)
        base = current_content(proposal)

        amendment = Amendment(
            original_proposal_id=proposal.id,
            original_text=base if text is not None else None,  # type: ignore[arg-type]
            amended_text=text,
            original_line_items=base if items is not None else None,  # type: ignore[arg-type]
            amended_line_items=items,
            proposer_province=proposer_province,
            date_created=now,
            expiry_date=now + timedelta(days=settings.amendment_voting_days),
            depth=depth,
        )

        updated = proposal.model_copy(deep=True)
        if updated.amendment is not None:
            updated.amendment.status = "superseded"
            updated.amendment_history.append(updated.amendment)
        updated.amendment = amendment
        updated.votes = {}
        updated.vote_counts = VoteCounts()
        return updated, None

    stored, _ = await _read_modify_write(repo, proposal_id, mutate, settings.store_write_retries)
    logger.info(
        "amendment_submitted number=%s by=%s depth=%d",
        stored.legislation_number,
        proposer_province,
        stored.amendment.depth if stored.amendment else 0,
    )
    return stored


class AmendmentView(BaseModel):
    """Diff of an amendment (or would-be amendment) against what it replaces."""

    amendment_of_amendment: bool = False
    lines: list[DiffLine] | None = None
    rendered: list[RenderedLine] | None = None
    line_items: list[LineItemChange] | None = None


def describe_amendment(amendment: Amendment) -> AmendmentView:
    aoa = amendment.amendment_of_amendment
    if amendment.amended_text is not None:
        lines = diff_lines(amendment.original_text or "", amendment.amended_text)
        return AmendmentView(
            amendment_of_amendment=aoa, lines=lines, rendered=render_diff(lines, aoa)
        )
    return AmendmentView(
        amendment_of_amendment=aoa,
        line_items=diff_line_items(
            amendment.original_line_items or [], amendment.amended_line_items or []
        ),
    )


def preview_amendment(
    proposal: Proposal,
    *,
    amended_text: str | None = None,
    amended_line_items: list[LineItem] | None = None,
    max_depth: int = 2,
) -> AmendmentView:
    """Diff a draft amendment against the current ballot without saving anything."""
    text, items = _amended_payload(proposal, amended_text, amended_line_items)
    aoa = next_amendment_depth(proposal, max_depth) >= 2
    base = current_content(proposal)
    if text is not None:
        lines = diff_lines(base, text)  # type: ignore[arg-type]
        return AmendmentView(
            amendment_of_amendment=aoa, lines=lines, rendered=render_diff(lines, aoa)
        )
    return AmendmentView(
        amendment_of_amendment=aoa,
        line_items=diff_line_items(base, items or []),  # type: ignore[arg-type]
    )
