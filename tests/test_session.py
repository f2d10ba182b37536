"""Tests for per-deal matching sessions and user decisions."""

import logging
from types import SimpleNamespace

import pytest

from dealflow.connectors import (
    ClaudeClient,
    ClaudeScoringOracle,
    MockContactDiscovery,
    MockScoringOracle,
    ScoringOracle,
    ScoringResult,
)
from dealflow.errors import InvalidDecisionError, RecordNotFoundError
from dealflow.models import (
    BuyerContact,
    BuyerProfile,
    Confidence,
    DealProfile,
    DecisionState,
    DimensionScore,
    PassCategory,
    Tracker,
)
from dealflow.score import MatchingSession


def uniform(score, confidence=Confidence.HIGH, thesis_bonus=0.0, **overrides) -> ScoringResult:
    values = {
        name: DimensionScore(score=score, confidence=confidence)
        for name in ("geography", "services", "size", "owner_goals")
    }
    values.update(overrides)
    return ScoringResult(thesis_bonus=thesis_bonus, **values)


@pytest.fixture
def universe(make_buyer, make_deal):
    strong = make_buyer("Summit", platform_company_name="Cool Air Co")
    weak = make_buyer("Granite", platform_company_name="Pipe Pros")
    excluded = make_buyer("Harbor", platform_company_name="Air Masters")
    deal = make_deal("Lone Star HVAC")
    oracle = MockScoringOracle(results={
        strong.id: uniform(85),
        weak.id: uniform(30),
        excluded.id: uniform(
            95, size=DimensionScore(score=90, is_disqualified=True, reason="Deal below minimum size")
        ),
    })
    return {"strong": strong, "weak": weak, "excluded": excluded, "deal": deal, "oracle": oracle}


class TestMatchingRun:
    """Tests for scoring a deal's buyer universe."""

    @pytest.mark.asyncio
    async def test_run_ranks_buyers(self, repository, universe):
        session = MatchingSession(repository, universe["oracle"])

        result = await session.run(universe["deal"].id)

        assert [m.buyer_id for m in result.matches] == [
            universe["strong"].id,
            universe["weak"].id,
            universe["excluded"].id,
        ]
        assert result.matches[0].buyer_name == "Cool Air Co"
        assert result.matches[-1].is_disqualified
        assert result.summary.strong == 1
        assert result.summary.disqualified == 1
        assert result.oracle_failures == []

    @pytest.mark.asyncio
    async def test_run_persists_matches(self, repository, universe):
        await MatchingSession(repository, universe["oracle"]).run(universe["deal"].id)

        stored = repository.get_match(universe["deal"].id, universe["strong"].id)
        assert stored.composite_score == 85.0
        assert stored.decision_state == DecisionState.SCORED

    @pytest.mark.asyncio
    async def test_oracle_failure_scores_neutral(self, repository, universe):
        oracle = universe["oracle"]
        oracle.failing_buyers = {universe["weak"].id}

        result = await MatchingSession(repository, oracle).run(universe["deal"].id)

        weak = next(m for m in result.matches if m.buyer_id == universe["weak"].id)
        assert weak.composite_score == 50.0
        assert weak.data_completeness == Confidence.LOW
        assert result.oracle_failures == [universe["weak"].id]

    @pytest.mark.asyncio
    async def test_oracle_timeout_scores_neutral(self, repository, universe):
        oracle = universe["oracle"]
        oracle.slow_buyers = {universe["strong"].id}
        oracle.slow_delay = 2.0

        result = await MatchingSession(repository, oracle, timeout=0.05).run(universe["deal"].id)

        strong = next(m for m in result.matches if m.buyer_id == universe["strong"].id)
        assert strong.composite_score == 50.0
        assert strong.needs_review
        assert universe["strong"].id in result.oracle_failures

    @pytest.mark.asyncio
    async def test_tracker_weights_applied(self, repository):
        tracker = repository.add_tracker(Tracker(name="Plumbing", geography_weight=0.0))
        buyer = repository.add_buyer(BuyerProfile(tracker_id=tracker.id, pe_firm_name="Summit"))
        deal = repository.add_deal(DealProfile(tracker_id=tracker.id, deal_name="Gulf Coast Plumbing"))

        oracle = MockScoringOracle(results={
            buyer.id: uniform(90, geography=DimensionScore(score=0, confidence=Confidence.HIGH)),
        })
        result = await MatchingSession(repository, oracle).run(deal.id)

        assert result.matches[0].composite_score == 90.0

    @pytest.mark.asyncio
    async def test_unknown_deal_raises(self, repository, universe):
        with pytest.raises(RecordNotFoundError):
            await MatchingSession(repository, universe["oracle"]).run("missing")

    @pytest.mark.asyncio
    async def test_unexpected_oracle_error_scores_neutral(self, repository, universe):
        class BrokenOracle(ScoringOracle):
            async def score(self, buyer, deal):
                if buyer.id == universe["weak"].id:
                    raise RuntimeError("upstream blew up")
                return await universe["oracle"].score(buyer, deal)

        result = await MatchingSession(repository, BrokenOracle()).run(universe["deal"].id)

        assert len(result.matches) == 3
        assert result.matches[0].buyer_id == universe["strong"].id
        assert result.oracle_failures == [universe["weak"].id]

    @pytest.mark.asyncio
    async def test_empty_claude_reply_scores_neutral(self, repository, universe):
        messages = SimpleNamespace(create=lambda **kwargs: SimpleNamespace(content=[]))
        oracle = ClaudeScoringOracle(client=ClaudeClient(api_key="test-key", client=SimpleNamespace(messages=messages)))

        result = await MatchingSession(repository, oracle).run(universe["deal"].id)

        assert len(result.matches) == 3
        assert all(m.composite_score == 50.0 for m in result.matches)
        assert len(result.oracle_failures) == 3

    @pytest.mark.asyncio
    async def test_deal_without_tracker_scores_nothing(self, repository, universe):
        deal = repository.add_deal(DealProfile(deal_name="Unassigned HVAC"))

        result = await MatchingSession(repository, universe["oracle"]).run(deal.id)

        assert result.matches == []
        assert universe["oracle"].calls == []
        assert repository.list_matches(deal.id) == []

    def test_zero_timeout_is_kept(self, repository, universe):
        assert MatchingSession(repository, universe["oracle"], timeout=0).timeout == 0

    @pytest.mark.asyncio
    async def test_rescore_preserves_decisions(self, repository, universe):
        deal_id = universe["deal"].id
        strong_id = universe["strong"].id
        weak_id = universe["weak"].id
        oracle = universe["oracle"]
        session = MatchingSession(repository, oracle)
        await session.run(deal_id)
        await session.approve(deal_id, strong_id)
        await session.set_interest(deal_id, strong_id, True)
        await session.pass_on_deal(deal_id, weak_id, "size_too_small", "Below their floor")

        oracle.results[strong_id] = uniform(60)
        oracle.results[weak_id] = uniform(90)
        result = await session.run(deal_id)

        strong = next(m for m in result.matches if m.buyer_id == strong_id)
        weak = next(m for m in result.matches if m.buyer_id == weak_id)
        assert strong.composite_score == 60.0
        assert strong.selected_for_outreach
        assert strong.interested is True
        assert weak.composite_score == 90.0
        assert weak.passed_on_deal
        assert weak.pass_category == PassCategory.SIZE_TOO_SMALL

        stored = repository.get_match(deal_id, weak_id)
        assert stored.passed_on_deal
        assert stored.pass_reason == "Below their floor"


class TestDecisions:
    """Tests for approve / interest / pass transitions."""

    @pytest.mark.asyncio
    async def test_decision_on_unscored_rejected(self, repository, universe):
        session = MatchingSession(repository, universe["oracle"])

        with pytest.raises(InvalidDecisionError):
            await session.approve(universe["deal"].id, universe["strong"].id)

    @pytest.mark.asyncio
    async def test_approve(self, repository, universe):
        session = MatchingSession(repository, universe["oracle"])
        deal_id, buyer_id = universe["deal"].id, universe["strong"].id
        await session.run(deal_id)

        match = await session.approve(deal_id, buyer_id)

        assert match.decision_state == DecisionState.APPROVED
        assert repository.get_match(deal_id, buyer_id).selected_for_outreach

    @pytest.mark.asyncio
    async def test_interest_is_tri_state(self, repository, universe):
        session = MatchingSession(repository, universe["oracle"])
        deal_id, buyer_id = universe["deal"].id, universe["strong"].id
        await session.run(deal_id)

        match = await session.set_interest(deal_id, buyer_id, False)
        assert match.decision_state == DecisionState.NOT_INTERESTED
        assert match.interested_at is not None

        match = await session.set_interest(deal_id, buyer_id, None)
        assert match.interested is None
        assert match.interested_at is None
        assert repository.get_match(deal_id, buyer_id).decision_state == DecisionState.SCORED

    @pytest.mark.asyncio
    async def test_pass_clears_outreach(self, repository, universe):
        session = MatchingSession(repository, universe["oracle"])
        deal_id, buyer_id = universe["deal"].id, universe["strong"].id
        await session.run(deal_id)
        await session.approve(deal_id, buyer_id)

        match = await session.pass_on_deal(
            deal_id, buyer_id, PassCategory.PORTFOLIO_CONFLICT, " Owns a competitor ", notes="  "
        )

        assert match.decision_state == DecisionState.PASSED
        assert not match.selected_for_outreach
        assert match.pass_reason == "Owns a competitor"
        assert match.pass_notes is None
        assert match.passed_at is not None

    @pytest.mark.asyncio
    async def test_pass_requires_category_and_reason(self, repository, universe):
        session = MatchingSession(repository, universe["oracle"])
        deal_id, buyer_id = universe["deal"].id, universe["strong"].id
        await session.run(deal_id)

        with pytest.raises(InvalidDecisionError):
            await session.pass_on_deal(deal_id, buyer_id, "bad_vibes", "No reason")
        with pytest.raises(InvalidDecisionError):
            await session.pass_on_deal(deal_id, buyer_id, "timing", "   ")

        assert not repository.get_match(deal_id, buyer_id).passed_on_deal

    @pytest.mark.asyncio
    async def test_no_approval_or_interest_after_pass(self, repository, universe):
        session = MatchingSession(repository, universe["oracle"])
        deal_id, buyer_id = universe["deal"].id, universe["strong"].id
        await session.run(deal_id)
        await session.pass_on_deal(deal_id, buyer_id, "timing", "Fund is fully deployed")

        with pytest.raises(InvalidDecisionError):
            await session.approve(deal_id, buyer_id)
        with pytest.raises(InvalidDecisionError):
            await session.set_interest(deal_id, buyer_id, True)


class TestContactDiscovery:
    """Tests for discovery triggered by approval."""

    @pytest.mark.asyncio
    async def test_approve_saves_discovered_contacts(self, repository, universe):
        discovery = MockContactDiscovery(
            contacts=[BuyerContact(buyer_id="placeholder", name="Jane Doe", title="Partner")]
        )
        session = MatchingSession(repository, universe["oracle"], contact_discovery=discovery)
        deal_id, buyer_id = universe["deal"].id, universe["strong"].id
        await session.run(deal_id)

        await session.approve(deal_id, buyer_id)
        await session.wait_for_discovery()

        assert discovery.requested == [buyer_id]
        contacts = repository.list_contacts(buyer_id)
        assert [(c.name, c.title) for c in contacts] == [("Jane Doe", "Partner")]

    @pytest.mark.asyncio
    async def test_discovery_failure_is_logged(self, repository, universe, caplog):
        discovery = MockContactDiscovery(fail=True)
        session = MatchingSession(repository, universe["oracle"], contact_discovery=discovery)
        deal_id, buyer_id = universe["deal"].id, universe["strong"].id
        await session.run(deal_id)

        with caplog.at_level(logging.WARNING):
            match = await session.approve(deal_id, buyer_id)
            await session.wait_for_discovery()

        assert match.selected_for_outreach
        assert repository.list_contacts(buyer_id) == []
        assert "Contact discovery failed" in caplog.text
