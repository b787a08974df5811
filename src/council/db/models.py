"""SQLAlchemy ORM models for the council database.

Tables: provinces, proposals. A proposal row keeps the full validated
document (amendment embedded) in a JSON column, plus the columns the
queries filter and sort on.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class ProvinceRow(Base):
    __tablename__ = "provinces"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    vote_weight: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    council_type: Mapped[str] = mapped_column(String(20), nullable=False)
    credentials: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(UTC))


class ProposalRow(Base):
    """One proposal document. ``version`` is the compare-and-swap token."""

    __tablename__ = "proposals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    legislation_number: Mapped[str] = mapped_column(String(10), nullable=False, unique=True)
    kind: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    proposer_province: Mapped[str] = mapped_column(String(100), nullable=False)
    is_mandatory: Mapped[bool] = mapped_column(Boolean, default=False)
    date_created: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expiry_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    added_to_law_book_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    document: Mapped[dict] = mapped_column(JSON, nullable=False)

    __table_args__ = (
        Index("ix_proposals_status", "status"),
        Index("ix_proposals_expiry", "expiry_date"),
    )
