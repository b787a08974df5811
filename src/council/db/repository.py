"""Repository pattern for database access.

Wraps SQLAlchemy async sessions. Every proposal read is validated against the
Proposal schema; every proposal write is a compare-and-swap on ``version``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from council.core.errors import ConcurrentUpdate, NotFound, StoreUnavailable
from council.db.models import ProposalRow, ProvinceRow
from council.models.province import Province
from council.models.proposal import Proposal

logger = logging.getLogger(__name__)


def _as_utc_naive(value: datetime | None) -> datetime | None:
    """SQLite DateTime columns hold naive UTC; normalise before binding."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return value.replace(tzinfo=None)


def _to_proposal(row: ProposalRow) -> Proposal:
    data = dict(row.document)
    data["id"] = row.id
    data["version"] = row.version
    return Proposal.model_validate(data)


def _to_province(row: ProvinceRow) -> Province:
    return Province(
        name=row.name,
        vote_weight=row.vote_weight,
        council_type=row.council_type,  # type: ignore[arg-type]
        credentials=row.credentials or "",
    )


def _column_values(proposal: Proposal) -> dict:
    return {
        "legislation_number": proposal.legislation_number,
        "kind": proposal.kind,
        "status": proposal.status,
        "proposer_province": proposal.proposer_province,
        "is_mandatory": proposal.is_mandatory,
        "date_created": _as_utc_naive(proposal.date_created),
        "expiry_date": _as_utc_naive(proposal.expiry_date),
        "added_to_law_book_date": _as_utc_naive(proposal.added_to_law_book_date),
        "document": proposal.model_dump(mode="json", exclude={"id", "version"}),
    }


class Repository:
    """Async repository for all database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def commit(self) -> None:
        """Make pending writes durable before anyone is told about them.

        Storage I/O failures surface as the retryable ``StoreUnavailable``.
        """
        try:
            await self.session.commit()
        except OperationalError as exc:
            await self.session.rollback()
            logger.warning("store_unavailable: %s", exc)
            raise StoreUnavailable(str(exc.orig or exc)) from exc

    # --- Provinces ---

    async def add_province(self, province: Province) -> Province:
        row = ProvinceRow(
            name=province.name,
            vote_weight=province.vote_weight,
            council_type=province.council_type,
            credentials=province.credentials,
        )
        self.session.add(row)
        await self.session.flush()
        return province

    async def get_province(self, name: str) -> Province | None:
        row = await self.session.get(ProvinceRow, name)
        return _to_province(row) if row else None

    async def get_provinces(self) -> list[Province]:
        """Return every province, ordered by name."""
        stmt = select(ProvinceRow).order_by(ProvinceRow.name)
        result = await self.session.execute(stmt)
        return [_to_province(row) for row in result.scalars().all()]

    async def count_provinces(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(ProvinceRow))
        return result.scalar_one()

    async def update_province(self, name: str, council_type: str, vote_weight: float) -> Province:
        row = await self.session.get(ProvinceRow, name)
        if row is None:
            raise NotFound(f"Province {name!r} not found")
        row.council_type = council_type
        row.vote_weight = vote_weight
        await self.session.flush()
        return _to_province(row)

    # --- Proposals ---

    async def add_proposal(self, proposal: Proposal) -> Proposal:
        """Insert a new proposal document.

        A legislation number already taken by a concurrent creation raises
        ``ConcurrentUpdate``; the caller may retry and get a fresh number.
        """
        row = ProposalRow(id=proposal.id, version=0, **_column_values(proposal))
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            await self.session.rollback()
            raise ConcurrentUpdate(
                f"Legislation number {proposal.legislation_number} was taken concurrently"
            ) from exc
        return proposal.model_copy(update={"version": 0})

    async def get_proposal(self, proposal_id: str) -> Proposal | None:
        """Authoritative read, bypasses anything cached in the session."""
        stmt = (
            select(ProposalRow)
            .where(ProposalRow.id == proposal_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return _to_proposal(row) if row else None

    async def update_proposal(self, proposal: Proposal, expected_version: int) -> Proposal:
        """Write *proposal* only if the stored version still equals *expected_version*.

        Raises ``ConcurrentUpdate`` when someone else wrote first, ``NotFound``
        when the proposal is gone.
        """
        new_version = expected_version + 1
        stmt = (
            update(ProposalRow)
            .where(ProposalRow.id == proposal.id, ProposalRow.version == expected_version)
            .values(version=new_version, **_column_values(proposal))
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            exists = await self.session.get(ProposalRow, proposal.id)
            if exists is None:
                raise NotFound(f"Proposal {proposal.id!r} not found")
            raise ConcurrentUpdate(f"Proposal {proposal.id!r} changed since it was read")
        return proposal.model_copy(update={"version": new_version})

    async def list_proposals(
        self,
        statuses: Iterable[str] | None = None,
        order_by: str = "date_created",
        descending: bool = True,
    ) -> list[Proposal]:
        """Query proposals, optionally filtered by status, sorted by a date column."""
        column = ProposalRow.expiry_date if order_by == "expiry_date" else ProposalRow.date_created
        stmt = select(ProposalRow).execution_options(populate_existing=True)
        if statuses is not None:
            stmt = stmt.where(ProposalRow.status.in_(list(statuses)))
        stmt = stmt.order_by(column.desc() if descending else column.asc())
        result = await self.session.execute(stmt)
        return [_to_proposal(row) for row in result.scalars().all()]

    async def get_expired_active_proposals(self, now: datetime) -> list[Proposal]:
        """Active proposals whose voting window has run out."""
        stmt = (
            select(ProposalRow)
            .where(
                ProposalRow.status == "active",
                ProposalRow.expiry_date <= _as_utc_naive(now),
            )
            .order_by(ProposalRow.expiry_date.asc())
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return [_to_proposal(row) for row in result.scalars().all()]

    async def max_legislation_number(self) -> int:
        """Highest numeric legislation number in use, 0 when there is none.

        Non-numeric numbers are ignored.
        """
        result = await self.session.execute(select(ProposalRow.legislation_number))
        highest = 0
        for (number,) in result.all():
            try:
                value = int(number)
            except (TypeError, ValueError):
                continue
            highest = max(highest, value)
        return highest
