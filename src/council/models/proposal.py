"""Proposal models: Proposals, Amendments, ballots and weighted counts.

A Proposal is stored as one document with its current Amendment embedded.
These models are the schema every document is validated against on read.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Annotated, Literal

from pydantic import BaseModel, Field, computed_field

VoteChoice = Literal["aye", "nay", "present"]
VOTE_CHOICES: tuple[str, ...] = ("aye", "nay", "present")

ProposalStatus = Literal[
    "active",
    "passed",
    "passedEarly",
    "failed",
    "failedEarly",
    "withdrawn",
]
TERMINAL_STATUSES = frozenset({"passed", "passedEarly", "failed", "failedEarly", "withdrawn"})
PASSED_STATUSES = frozenset({"passed", "passedEarly"})


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


class VoteCounts(BaseModel):
    """Weighted sums per ballot choice. Always derived from a vote map."""

    aye: float = 0.0
    nay: float = 0.0
    present: float = 0.0

    @property
    def total(self) -> float:
        return self.aye + self.nay + self.present


class LineItem(BaseModel):
    """A named budget line."""

    title: str
    amount: float
    description: str = ""


class LawContent(BaseModel):
    kind: Literal["law"] = "law"
    title: str
    purpose: str
    whereas_statements: list[str] = Field(default_factory=list)
    changes: str


class BudgetContent(BaseModel):
    kind: Literal["budget"] = "budget"
    budget_type: str
    total_amount: float
    budget_purpose: str
    line_items: list[LineItem] = Field(default_factory=list)
    justification: str


ProposalContent = Annotated[LawContent | BudgetContent, Field(discriminator="kind")]


class Amendment(BaseModel):
    """A replacement text (law) or line-item list (budget) voted on independently.

    While an amendment is active, ballots are cast on it rather than on the
    parent proposal. ``depth`` is 1 for an amendment and 2 for an amendment
    of an amendment.
    """

    id: str = Field(default_factory=_uuid)
    original_proposal_id: str
    original_text: str | None = None
    amended_text: str | None = None
    original_line_items: list[LineItem] | None = None
    amended_line_items: list[LineItem] | None = None
    proposer_province: str
    date_created: datetime = Field(default_factory=_now)
    expiry_date: datetime
    votes: dict[str, VoteChoice] = Field(default_factory=dict)
    vote_counts: VoteCounts = Field(default_factory=VoteCounts)
    status: Literal["active", "superseded"] = "active"
    depth: int = Field(default=1, ge=1)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def amendment_of_amendment(self) -> bool:
        return self.depth >= 2


class Proposal(BaseModel):
    """A law or budget put before the council."""

    id: str = Field(default_factory=_uuid)
    legislation_number: str
    content: ProposalContent
    title: str = ""
    synopsis: str = ""
    proposer_province: str
    date_created: datetime = Field(default_factory=_now)
    expiry_date: datetime
    votes: dict[str, VoteChoice] = Field(default_factory=dict)
    vote_counts: VoteCounts = Field(default_factory=VoteCounts)
    status: ProposalStatus = "active"
    is_mandatory: bool = False
    amendment: Amendment | None = None
    amendment_history: list[Amendment] = Field(default_factory=list)
    added_to_law_book_date: datetime | None = None
    version: int = 0

    @property
    def kind(self) -> str:
        return self.content.kind

    @property
    def active_amendment(self) -> Amendment | None:
        if self.amendment is not None and self.amendment.status == "active":
            return self.amendment
        return None
