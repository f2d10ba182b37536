"""Per-deal matching: score every buyer, keep user decisions, record new ones."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Union

from dealflow.config import settings
from dealflow.connectors.base import ContactDiscovery, ScoringOracle, ScoringResult
from dealflow.errors import InvalidDecisionError, OracleError
from dealflow.models import (
    BuyerDealMatch,
    BuyerProfile,
    DealProfile,
    DecisionState,
    PassCategory,
    ScoreWeights,
    SCORE_FIELDS,
)
from dealflow.models.profiles import utcnow
from dealflow.models.repository import Repository
from .aggregator import ScoreAggregator, ScoreSummary

logger = logging.getLogger(__name__)


@dataclass
class MatchingResult:
    """Ranked matches for one deal."""

    deal_id: str
    matches: list[BuyerDealMatch] = field(default_factory=list)
    summary: ScoreSummary = field(default_factory=ScoreSummary)
    oracle_failures: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "deal_id": self.deal_id,
            "matches": [m.model_dump(mode="json") for m in self.matches],
            "summary": self.summary.to_dict(),
            "oracle_failures": self.oracle_failures,
        }


class MatchingSession:
    """Score a deal's buyer universe and record decisions on the results."""

    def __init__(
        self,
        repository: Repository,
        scoring_oracle: ScoringOracle,
        contact_discovery: Optional[ContactDiscovery] = None,
        aggregator: Optional[ScoreAggregator] = None,
        timeout: Optional[float] = None,
        concurrency: Optional[int] = None,
    ):
        self.repository = repository
        self.scoring_oracle = scoring_oracle
        self.contact_discovery = contact_discovery
        self.aggregator = aggregator or ScoreAggregator()
        self.timeout = settings.oracle_timeout_seconds if timeout is None else timeout
        self.concurrency = max(1, concurrency or settings.scoring_concurrency)
        self._discovery_tasks: set[asyncio.Task] = set()

    async def run(self, deal_id: str) -> MatchingResult:
        """Score every buyer in the deal's tracker and return them ranked.

        An oracle failure or timeout for one buyer scores that buyer on
        neutral defaults; it never fails the session. Only score fields are
        written, so decisions on existing matches survive a re-score.
        """
        deal = self.repository.get_deal(deal_id)
        if not deal.tracker_id:
            # Buyers are scoped to a tracker
            logger.warning(f"Deal {deal.id} has no tracker; nothing to score")
            return MatchingResult(deal_id=deal.id, summary=self.aggregator.summarize([]))
        weights = self._weights_for(deal)
        buyers = self.repository.list_buyers(tracker_id=deal.tracker_id)
        logger.info(f"Scoring {len(buyers)} buyers for deal {deal.deal_name!r}")

        semaphore = asyncio.Semaphore(self.concurrency)
        results = await asyncio.gather(
            *[self._score_one(semaphore, buyer, deal) for buyer in buyers]
        )

        failures = []
        fresh = []
        for buyer, (scoring, failed) in zip(buyers, results):
            if failed:
                failures.append(buyer.id)
            fresh.append(
                self.aggregator.aggregate(
                    scoring.dimensions(),
                    scoring.thesis_bonus,
                    weights,
                    buyer_id=buyer.id,
                    deal_id=deal.id,
                    buyer_name=buyer.display_name,
                )
            )

        merged = self._merge_with_stored(deal.id, fresh)
        self.repository.save_match_scores(merged)

        ranked = self.aggregator.rank(merged)
        summary = self.aggregator.summarize(ranked)
        logger.info(
            f"Deal {deal.id}: {summary.strong} strong, {summary.moderate} moderate, "
            f"{summary.long_shot} long shot, {summary.disqualified} disqualified, "
            f"{len(failures)} oracle failures"
        )
        return MatchingResult(deal_id=deal.id, matches=ranked, summary=summary, oracle_failures=failures)

    # Decisions

    async def approve(self, deal_id: str, buyer_id: str) -> BuyerDealMatch:
        """Select a buyer for outreach and kick off contact discovery."""
        match = self._decidable_match(deal_id, buyer_id)
        if match.passed_on_deal:
            raise InvalidDecisionError(
                "Cannot approve a buyer that has passed on the deal",
                context={"deal_id": deal_id, "buyer_id": buyer_id},
            )
        match.selected_for_outreach = True
        self.repository.save_match_decision(match)
        logger.info(f"Buyer {buyer_id} approved for outreach on deal {deal_id}")

        if self.contact_discovery is not None:
            task = asyncio.create_task(self._discover_contacts(buyer_id))
            self._discovery_tasks.add(task)
            task.add_done_callback(self._discovery_done)
        return match

    async def set_interest(self, deal_id: str, buyer_id: str, interested: Optional[bool]) -> BuyerDealMatch:
        """Record interest (True), disinterest (False) or clear it (None)."""
        match = self._decidable_match(deal_id, buyer_id)
        if match.passed_on_deal:
            raise InvalidDecisionError(
                "Cannot record interest for a buyer that has passed on the deal",
                context={"deal_id": deal_id, "buyer_id": buyer_id},
            )
        match.interested = interested
        match.interested_at = utcnow() if interested is not None else None
        self.repository.save_match_decision(match)
        return match

    async def pass_on_deal(
        self,
        deal_id: str,
        buyer_id: str,
        category: Union[PassCategory, str],
        reason: str,
        notes: Optional[str] = None,
    ) -> BuyerDealMatch:
        """Mark that the buyer passed, with a category and reason."""
        try:
            category = PassCategory(category.strip().lower() if isinstance(category, str) else category)
        except ValueError:
            raise InvalidDecisionError(
                f"Unknown pass category: {category!r}",
                context={"allowed": [c.value for c in PassCategory]},
            ) from None
        if not reason or not reason.strip():
            raise InvalidDecisionError("A pass reason is required")

        match = self._decidable_match(deal_id, buyer_id)
        match.passed_on_deal = True
        match.pass_category = category
        match.pass_reason = reason.strip()
        match.pass_notes = notes.strip() if notes and notes.strip() else None
        match.passed_at = utcnow()
        match.selected_for_outreach = False
        self.repository.save_match_decision(match)
        logger.info(f"Buyer {buyer_id} passed on deal {deal_id} ({category.value})")
        return match

    async def wait_for_discovery(self):
        """Block until in-flight contact discovery tasks finish."""
        if self._discovery_tasks:
            await asyncio.gather(*list(self._discovery_tasks), return_exceptions=True)

    # Helpers

    async def _score_one(
        self,
        semaphore: asyncio.Semaphore,
        buyer: BuyerProfile,
        deal: DealProfile,
    ) -> tuple[ScoringResult, bool]:
        async with semaphore:
            try:
                result = await asyncio.wait_for(
                    self.scoring_oracle.score(buyer, deal),
                    timeout=self.timeout,
                )
                return result, False
            except asyncio.TimeoutError:
                logger.warning(f"Scoring timed out for buyer {buyer.id} on deal {deal.id}")
            except OracleError as e:
                logger.warning(f"Scoring failed for buyer {buyer.id} on deal {deal.id}: {e}")
            except Exception as e:
                logger.error(f"Scoring oracle error for buyer {buyer.id} on deal {deal.id}: {e!r}")
            return ScoringResult(), True

    def _weights_for(self, deal: DealProfile) -> ScoreWeights:
        tracker = self.repository.get_tracker(deal.tracker_id)
        return ScoreWeights(
            geography_weight=tracker.geography_weight,
            service_weight=tracker.service_weight,
            size_weight=tracker.size_weight,
            owner_goals_weight=tracker.owner_goals_weight,
        )

    def _merge_with_stored(self, deal_id: str, fresh: list[BuyerDealMatch]) -> list[BuyerDealMatch]:
        """Overlay new score fields onto stored matches; decisions stay as stored."""
        stored = {m.buyer_id: m for m in self.repository.list_matches(deal_id)}
        merged = []
        for match in fresh:
            existing = stored.get(match.buyer_id)
            if existing is None:
                merged.append(match)
                continue
            merged.append(
                existing.model_copy(update={name: getattr(match, name) for name in SCORE_FIELDS})
            )
        return merged

    def _discovery_done(self, task: asyncio.Task):
        self._discovery_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Contact discovery task failed: {task.exception()}")

    def _decidable_match(self, deal_id: str, buyer_id: str) -> BuyerDealMatch:
        match = self.repository.get_match(deal_id, buyer_id)
        if match is None or match.decision_state is DecisionState.UNSCORED:
            raise InvalidDecisionError(
                f"Buyer {buyer_id} has not been scored for deal {deal_id}",
                context={"deal_id": deal_id, "buyer_id": buyer_id},
            )
        return match

    async def _discover_contacts(self, buyer_id: str):
        try:
            contacts = await asyncio.wait_for(
                self.contact_discovery.discover(buyer_id),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Contact discovery timed out for buyer {buyer_id}")
            return
        except OracleError as e:
            logger.warning(f"Contact discovery failed for buyer {buyer_id}: {e}")
            return

        for contact in contacts:
            self.repository.add_contact(contact.model_copy(update={"buyer_id": buyer_id}))
        logger.info(f"Saved {len(contacts)} contacts for buyer {buyer_id}")
