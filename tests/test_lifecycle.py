"""Tests for the proposal lifecycle: creation, voting, early close, withdrawal, amendments."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from council.config import Settings
from council.core.errors import (
    AmendmentDepthExceeded,
    ConcurrentUpdate,
    NotFound,
    PermissionDenied,
    ValidationError,
    VotingClosed,
)
from council.core.lifecycle import (
    cast_vote,
    create_budget_proposal,
    create_law_proposal,
    describe_amendment,
    end_voting_early,
    format_legislation_number,
    preview_amendment,
    resolve_expired,
    submit_amendment,
    withdraw_proposal,
)
from council.core.provinces import seed_provinces
from council.db.engine import create_engine, get_session
from council.db.models import Base
from council.db.repository import Repository
from council.models.proposal import LineItem
from council.models.province import Province

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


async def _law(repo: Repository, proposer: str = "Kobat", **overrides):
    fields = {
        "title": "Road Maintenance Act",
        "purpose": "Keep the roads passable through winter.",
        "whereas_statements": ["Whereas the roads are poor"],
        "changes": "Section 1\nRoads are repaired yearly.\nSection 2",
    }
    fields.update(overrides)
    return await create_law_proposal(repo, proposer, now=T0, **fields)


async def _budget(repo: Repository, proposer: str = "Rilra"):
    return await create_budget_proposal(
        repo,
        proposer,
        budget_type="Infrastructure",
        total_amount=150,
        budget_purpose="Fund the roads",
        line_items=[LineItem(title="Roads", amount=100, description="paving")],
        justification="The roads need it",
        now=T0,
    )


class TestCreation:
    async def test_law_proposal_defaults(self, repo: Repository):
        proposal = await _law(repo)
        assert proposal.status == "active"
        assert proposal.legislation_number == "001"
        assert proposal.expiry_date == T0 + timedelta(hours=48)
        assert proposal.title == "Road Maintenance Act"
        assert proposal.votes == {}
        assert not proposal.is_mandatory

    async def test_numbers_increase(self, repo: Repository):
        first = await _law(repo)
        second = await _budget(repo)
        assert (first.legislation_number, second.legislation_number) == ("001", "002")

    async def test_budget_title_includes_number(self, repo: Repository):
        await _law(repo)
        budget = await _budget(repo)
        assert budget.title == "Budget for Infrastructure - #002"
        assert budget.kind == "budget"

    async def test_administrator_proposals_are_mandatory(self, repo: Repository):
        proposal = await _law(repo, proposer="Administrator")
        assert proposal.is_mandatory

    async def test_synopsis_truncated(self, repo: Repository):
        proposal = await _law(repo, purpose="x" * 200)
        assert proposal.synopsis == "x" * 150 + "..."

    async def test_missing_whereas_rejected(self, repo: Repository):
        with pytest.raises(ValidationError):
            await _law(repo, whereas_statements=[])

    async def test_too_many_whereas_rejected(self, repo: Repository):
        with pytest.raises(ValidationError):
            await _law(repo, whereas_statements=[f"Whereas {i}" for i in range(11)])

    async def test_blank_whereas_rejected(self, repo: Repository):
        with pytest.raises(ValidationError):
            await _law(repo, whereas_statements=["Whereas one", "  "])

    async def test_blank_title_rejected(self, repo: Repository):
        with pytest.raises(ValidationError):
            await _law(repo, title="   ")

    async def test_unknown_proposer(self, repo: Repository):
        with pytest.raises(NotFound):
            await _law(repo, proposer="Atlantis")

    async def test_budget_line_item_rules(self, repo: Repository):
        with pytest.raises(ValidationError):
            await create_budget_proposal(
                repo,
                "Rilra",
                budget_type="Infrastructure",
                total_amount=100,
                budget_purpose="Fund",
                line_items=[LineItem(title="Roads", amount=0, description="paving")],
                justification="Needed",
                now=T0,
            )
        with pytest.raises(ValidationError):
            await create_budget_proposal(
                repo,
                "Rilra",
                budget_type="Infrastructure",
                total_amount=100,
                budget_purpose="Fund",
                line_items=[LineItem(title="Roads", amount=10, description="d" * 101)],
                justification="Needed",
                now=T0,
            )

    async def test_budget_total_must_be_positive(self, repo: Repository):
        with pytest.raises(ValidationError):
            await create_budget_proposal(
                repo,
                "Rilra",
                budget_type="Infrastructure",
                total_amount=-5,
                budget_purpose="Fund",
                line_items=[LineItem(title="Roads", amount=10, description="paving")],
                justification="Needed",
                now=T0,
            )

    def test_format_legislation_number(self):
        assert format_legislation_number(7) == "007"
        assert format_legislation_number(1234) == "1234"


class TestVoting:
    async def test_weighted_counts(self, repo: Repository):
        proposal = await _law(repo)
        later = T0 + timedelta(hours=1)
        await cast_vote(repo, proposal.id, "Kobat", "aye", now=later)
        outcome = await cast_vote(repo, proposal.id, "Capital", "nay", now=later)
        assert not outcome.closed
        assert outcome.target == "proposal"
        counts = outcome.proposal.vote_counts
        assert (counts.aye, counts.nay, counts.present) == (1.5, 2.0, 0.0)

    async def test_revote_replaces_ballot(self, repo: Repository):
        proposal = await _law(repo)
        later = T0 + timedelta(hours=1)
        await cast_vote(repo, proposal.id, "Kobat", "aye", now=later)
        outcome = await cast_vote(repo, proposal.id, "Kobat", "present", now=later)
        assert outcome.proposal.votes == {"Kobat": "present"}
        assert outcome.proposal.vote_counts.aye == 0.0
        assert outcome.proposal.vote_counts.present == 1.5

    async def test_late_vote_resolves_without_recording(self, repo: Repository):
        proposal = await _law(repo)
        later = T0 + timedelta(hours=1)
        await cast_vote(repo, proposal.id, "Kobat", "aye", now=later)
        await cast_vote(repo, proposal.id, "Capital", "nay", now=later)

        outcome = await cast_vote(
            repo, proposal.id, "Rilra", "aye", now=T0 + timedelta(hours=50)
        )
        assert outcome.closed
        assert outcome.proposal.status == "failed"
        assert "Rilra" not in outcome.proposal.votes

    async def test_late_vote_passes_on_aye_majority(self, repo: Repository):
        proposal = await _law(repo)
        await cast_vote(repo, proposal.id, "Capital", "aye", now=T0)
        outcome = await cast_vote(repo, proposal.id, "Kobat", "nay", now=T0 + timedelta(hours=48))
        assert outcome.closed
        assert outcome.proposal.status == "passed"

    async def test_vote_after_resolution_is_refused(self, repo: Repository):
        proposal = await _law(repo)
        await cast_vote(repo, proposal.id, "Kobat", "aye", now=T0 + timedelta(hours=49))
        with pytest.raises(VotingClosed) as exc_info:
            await cast_vote(repo, proposal.id, "Kobat", "aye", now=T0 + timedelta(hours=49))
        assert exc_info.value.status == "failed"

    async def test_invalid_choice(self, repo: Repository):
        proposal = await _law(repo)
        with pytest.raises(ValidationError):
            await cast_vote(repo, proposal.id, "Kobat", "maybe", now=T0)

    async def test_unknown_voter(self, repo: Repository):
        proposal = await _law(repo)
        with pytest.raises(NotFound):
            await cast_vote(repo, proposal.id, "Atlantis", "aye", now=T0)

    async def test_unknown_proposal(self, repo: Repository):
        with pytest.raises(NotFound):
            await cast_vote(repo, "missing", "Kobat", "aye", now=T0)

    async def test_counts_follow_current_weights(self, repo: Repository):
        proposal = await _law(repo)
        await cast_vote(repo, proposal.id, "Guzia", "aye", now=T0)
        await repo.update_province("Guzia", "Upper Council", 1.5)
        outcome = await cast_vote(repo, proposal.id, "Rilra", "nay", now=T0)
        assert outcome.proposal.vote_counts.aye == 1.5


class TestEndVotingEarly:
    async def test_only_the_king(self, repo: Repository):
        proposal = await _law(repo)
        with pytest.raises(PermissionDenied):
            await end_voting_early(repo, proposal.id, "Kobat", now=T0)
        assert (await repo.get_proposal(proposal.id)).status == "active"

    async def test_fails_early_without_supermajority(self, repo: Repository):
        proposal = await _law(repo)
        await cast_vote(repo, proposal.id, "Capital", "aye", now=T0)
        closed_at = T0 + timedelta(hours=2)
        result = await end_voting_early(repo, proposal.id, "Capital", now=closed_at)
        assert result.status == "failedEarly"
        assert result.expiry_date == closed_at

    async def test_closed_proposal_refused(self, repo: Repository):
        proposal = await _law(repo)
        await end_voting_early(repo, proposal.id, "Capital", now=T0)
        with pytest.raises(VotingClosed):
            await end_voting_early(repo, proposal.id, "Capital", now=T0)

    async def test_exact_sixty_percent_passes_early(self, engine: AsyncEngine):
        council = [
            Province(name="Capital", vote_weight=2.0, council_type="King"),
            Province(name="Hovalen", vote_weight=4.6, council_type="Upper Council"),
            Province(name="Izartil", vote_weight=4.4, council_type="Upper Council"),
            Province(name="Administrator", vote_weight=0.0, council_type="Admin"),
        ]
        async with get_session(engine) as session:
            repo = Repository(session)
            await seed_provinces(repo, council)
            proposal = await _law(repo, proposer="Hovalen")
            await cast_vote(repo, proposal.id, "Capital", "aye", now=T0)
            await cast_vote(repo, proposal.id, "Hovalen", "aye", now=T0)
            await cast_vote(repo, proposal.id, "Izartil", "nay", now=T0)
            result = await end_voting_early(repo, proposal.id, "Capital", now=T0)
        assert result.status == "passedEarly"

    async def test_tallies_active_amendment(self, repo: Repository):
        proposal = await _law(repo)
        for name in ("Capital", "Hovalen", "Izartil", "Kobat"):
            await cast_vote(repo, proposal.id, name, "aye", now=T0)
        await submit_amendment(
            repo, proposal.id, "Rilra", amended_text="Roads are repaired monthly.", now=T0
        )
        result = await end_voting_early(repo, proposal.id, "Capital", now=T0)
        assert result.status == "failedEarly"


class TestWithdraw:
    async def test_non_proposer_denied(self, repo: Repository):
        proposal = await _law(repo, proposer="Kobat")
        with pytest.raises(PermissionDenied):
            await withdraw_proposal(repo, proposal.id, "Rilra", now=T0)
        assert (await repo.get_proposal(proposal.id)).status == "active"

    async def test_proposer_withdraws(self, repo: Repository):
        proposal = await _law(repo, proposer="Kobat")
        later = T0 + timedelta(hours=3)
        result = await withdraw_proposal(repo, proposal.id, "Kobat", now=later)
        assert result.status == "withdrawn"
        assert result.expiry_date == later

    async def test_withdrawn_is_final(self, repo: Repository):
        proposal = await _law(repo, proposer="Kobat")
        await withdraw_proposal(repo, proposal.id, "Kobat", now=T0)
        with pytest.raises(VotingClosed):
            await withdraw_proposal(repo, proposal.id, "Kobat", now=T0)
        with pytest.raises(VotingClosed):
            await cast_vote(repo, proposal.id, "Kobat", "aye", now=T0)


class TestAmendments:
    async def test_amendment_resets_parent_votes(self, repo: Repository):
        proposal = await _law(repo)
        await cast_vote(repo, proposal.id, "Capital", "aye", now=T0)
        amended = await submit_amendment(
            repo,
            proposal.id,
            "Rilra",
            amended_text="Section 1\nRoads are repaired monthly.",
            now=T0,
        )
        assert amended.votes == {}
        assert amended.vote_counts.total == 0.0
        amendment = amended.amendment
        assert amendment.depth == 1
        assert not amendment.amendment_of_amendment
        assert amendment.original_text == proposal.content.changes
        assert amendment.expiry_date == T0 + timedelta(days=3)

    async def test_votes_go_to_the_amendment(self, repo: Repository):
        proposal = await _law(repo)
        await submit_amendment(repo, proposal.id, "Rilra", amended_text="New text", now=T0)
        outcome = await cast_vote(repo, proposal.id, "Kobat", "aye", now=T0)
        assert outcome.target == "amendment"
        assert outcome.proposal.amendment.votes == {"Kobat": "aye"}
        assert outcome.proposal.amendment.vote_counts.aye == 1.5
        assert outcome.proposal.votes == {}

    async def test_amendment_of_amendment_supersedes(self, repo: Repository):
        proposal = await _law(repo)
        await submit_amendment(repo, proposal.id, "Rilra", amended_text="First rewrite", now=T0)
        result = await submit_amendment(
            repo, proposal.id, "Puron", amended_text="Second rewrite", now=T0
        )
        assert result.amendment.depth == 2
        assert result.amendment.amendment_of_amendment
        assert result.amendment.original_text == "First rewrite"
        assert [a.status for a in result.amendment_history] == ["superseded"]
        assert result.amendment_history[0].amended_text == "First rewrite"

    async def test_third_level_rejected(self, repo: Repository):
        proposal = await _law(repo)
        await submit_amendment(repo, proposal.id, "Rilra", amended_text="First", now=T0)
        await submit_amendment(repo, proposal.id, "Puron", amended_text="Second", now=T0)
        with pytest.raises(AmendmentDepthExceeded):
            await submit_amendment(repo, proposal.id, "Atitia", amended_text="Third", now=T0)
        stored = await repo.get_proposal(proposal.id)
        assert stored.amendment.amended_text == "Second"

    async def test_depth_cap_is_configurable(self, repo: Repository):
        proposal = await _law(repo)
        await submit_amendment(repo, proposal.id, "Rilra", amended_text="First", now=T0)
        with pytest.raises(AmendmentDepthExceeded):
            await submit_amendment(
                repo,
                proposal.id,
                "Puron",
                amended_text="Second",
                settings=Settings(max_amendment_depth=1),
                now=T0,
            )

    async def test_wrong_payload_kind(self, repo: Repository):
        law = await _law(repo)
        with pytest.raises(ValidationError):
            await submit_amendment(
                repo,
                law.id,
                "Rilra",
                amended_line_items=[LineItem(title="A", amount=1, description="x")],
                now=T0,
            )
        with pytest.raises(ValidationError):
            await submit_amendment(repo, law.id, "Rilra", amended_text="   ", now=T0)

    async def test_closed_proposal_cannot_be_amended(self, repo: Repository):
        proposal = await _law(repo)
        await withdraw_proposal(repo, proposal.id, "Kobat", now=T0)
        with pytest.raises(VotingClosed):
            await submit_amendment(repo, proposal.id, "Rilra", amended_text="Late", now=T0)

    async def test_budget_amendment_line_items(self, repo: Repository):
        budget = await _budget(repo)
        result = await submit_amendment(
            repo,
            budget.id,
            "Puron",
            amended_line_items=[
                LineItem(title="Roads", amount=150, description="paving"),
                LineItem(title="Bridges", amount=50, description="new span"),
            ],
            now=T0,
        )
        view = describe_amendment(result.amendment)
        assert view.lines is None
        assert [(c.kind, c.item.title) for c in view.line_items] == [
            ("modified", "Roads"),
            ("added", "Bridges"),
        ]

    async def test_expiry_resolution_uses_amendment_tally(self, repo: Repository):
        proposal = await _law(repo)
        await cast_vote(repo, proposal.id, "Capital", "aye", now=T0)
        await submit_amendment(repo, proposal.id, "Rilra", amended_text="Rewrite", now=T0)
        await cast_vote(repo, proposal.id, "Kobat", "nay", now=T0)
        outcome = await cast_vote(
            repo, proposal.id, "Rilra", "aye", now=T0 + timedelta(hours=49)
        )
        assert outcome.closed
        assert outcome.proposal.status == "failed"

    async def test_preview_does_not_save(self, repo: Repository):
        proposal = await _law(repo)
        view = preview_amendment(
            proposal, amended_text="Section 1\nRoads are repaired monthly.\nSection 2"
        )
        assert not view.amendment_of_amendment
        kinds = {(line.text, line.kind) for line in view.lines}
        assert ("Roads are repaired monthly.", "added") in kinds
        assert ("Roads are repaired yearly.", "removed") in kinds
        assert (await repo.get_proposal(proposal.id)).amendment is None

    async def test_preview_of_second_level(self, repo: Repository):
        proposal = await _law(repo)
        amended = await submit_amendment(repo, proposal.id, "Rilra", amended_text="First", now=T0)
        view = preview_amendment(amended, amended_text="Second")
        assert view.amendment_of_amendment
        assert {r.color for r in view.rendered} == {"green", "orange"}


class TestResolveExpired:
    async def test_sweeps_only_expired(self, repo: Repository):
        old = await _law(repo)
        await cast_vote(repo, old.id, "Capital", "aye", now=T0)
        fresh = await create_law_proposal(
            repo,
            "Rilra",
            title="Later Act",
            purpose="Later",
            whereas_statements=["Whereas later"],
            changes="Later",
            now=T0 + timedelta(hours=40),
        )
        resolved = await resolve_expired(repo, now=T0 + timedelta(hours=49))
        assert [p.id for p in resolved] == [old.id]
        assert resolved[0].status == "passed"
        assert (await repo.get_proposal(fresh.id)).status == "active"

    async def test_second_sweep_is_a_no_op(self, repo: Repository):
        await _law(repo)
        await resolve_expired(repo, now=T0 + timedelta(hours=49))
        assert await resolve_expired(repo, now=T0 + timedelta(hours=49)) == []


class TestConcurrency:
    async def test_stale_version_rejected(self, repo: Repository):
        proposal = await _law(repo)
        await cast_vote(repo, proposal.id, "Kobat", "aye", now=T0)
        stale = proposal.model_copy(update={"status": "withdrawn"})
        with pytest.raises(ConcurrentUpdate):
            await repo.update_proposal(stale, expected_version=proposal.version)
        assert (await repo.get_proposal(proposal.id)).status == "active"

    async def test_each_write_bumps_version(self, repo: Repository):
        proposal = await _law(repo)
        assert proposal.version == 0
        outcome = await cast_vote(repo, proposal.id, "Kobat", "aye", now=T0)
        assert outcome.proposal.version == 1
        assert (await repo.get_proposal(proposal.id)).version == 1

    async def test_sequential_ballots_accumulate(self, repo: Repository):
        proposal = await _law(repo)
        await cast_vote(repo, proposal.id, "Kobat", "aye", now=T0)
        await cast_vote(repo, proposal.id, "Rilra", "nay", now=T0)
        stored = await repo.get_proposal(proposal.id)
        assert stored.votes == {"Kobat": "aye", "Rilra": "nay"}

    async def test_racing_writer_between_read_and_write(self, tmp_path):
        # A file database so two sessions hold separate connections.
        eng = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'council.db'}")
        async with eng.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        try:
            async with get_session(eng) as session:
                setup = Repository(session)
                await seed_provinces(setup)
                proposal = await _law(setup)

            async with get_session(eng) as session:
                repo = Repository(session)
                original = repo.update_proposal
                calls = []

                async def update_after_rival(updated, expected_version):
                    calls.append(expected_version)
                    if len(calls) == 1:
                        async with get_session(eng) as other:
                            await cast_vote(Repository(other), proposal.id, "Rilra", "nay", now=T0)
                    return await original(updated, expected_version=expected_version)

                repo.update_proposal = update_after_rival
                outcome = await cast_vote(repo, proposal.id, "Kobat", "aye", now=T0)

            assert calls == [0, 1]
            assert outcome.proposal.version == 2
            async with get_session(eng) as session:
                stored = await Repository(session).get_proposal(proposal.id)
            assert stored.votes == {"Kobat": "aye", "Rilra": "nay"}
            assert stored.version == 2
            assert stored.vote_counts.aye > 0 and stored.vote_counts.nay > 0
        finally:
            await eng.dispose()

    async def test_gives_up_after_configured_retries(self, repo: Repository):
        proposal = await _law(repo)
        attempts = []

        async def always_stale(updated, expected_version):
            attempts.append(expected_version)
            raise ConcurrentUpdate("changed since it was read")

        repo.update_proposal = always_stale
        with pytest.raises(ConcurrentUpdate, match="gave up after 2 attempts"):
            await cast_vote(
                repo,
                proposal.id,
                "Kobat",
                "aye",
                settings=Settings(store_write_retries=2),
                now=T0,
            )
        assert len(attempts) == 2
        del repo.update_proposal
        assert (await repo.get_proposal(proposal.id)).votes == {}
