"""In-process collaborators for tests and local development."""

import asyncio
from typing import Optional

from dealflow.errors import OracleError
from dealflow.models import BuyerContact, BuyerProfile, DealProfile, FieldSource
from dealflow.models.profiles import new_id
from .base import (
    ContactDiscovery,
    ExtractionOracle,
    ExtractionResult,
    ScoringOracle,
    ScoringResult,
)


class MockExtractionOracle(ExtractionOracle):
    """Returns a canned result per source type."""

    name = "mock"

    def __init__(
        self,
        results: Optional[dict[FieldSource, ExtractionResult]] = None,
        fail: bool = False,
        delay: float = 0.0,
    ):
        self.results = results or {}
        self.fail = fail
        self.delay = delay
        self.calls: list[tuple[str, FieldSource, str]] = []

    async def extract(
        self,
        source_text: str,
        source_type: FieldSource,
        entity_kind: str = "buyer",
    ) -> ExtractionResult:
        self.calls.append((source_text, source_type, entity_kind))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise OracleError("Mock extraction failure")
        return self.results.get(source_type, ExtractionResult())


class MockScoringOracle(ScoringOracle):
    """Returns a canned result per buyer id; unknown buyers get an empty result."""

    name = "mock"

    def __init__(
        self,
        results: Optional[dict[str, ScoringResult]] = None,
        failing_buyers: Optional[set[str]] = None,
        slow_buyers: Optional[set[str]] = None,
        slow_delay: float = 5.0,
    ):
        self.results = results or {}
        self.failing_buyers = failing_buyers or set()
        self.slow_buyers = slow_buyers or set()
        self.slow_delay = slow_delay
        self.calls: list[tuple[str, str]] = []

    async def score(self, buyer: BuyerProfile, deal: DealProfile) -> ScoringResult:
        self.calls.append((buyer.id, deal.id))
        if buyer.id in self.slow_buyers:
            await asyncio.sleep(self.slow_delay)
        if buyer.id in self.failing_buyers:
            raise OracleError(f"Mock scoring failure for {buyer.id}")
        return self.results.get(buyer.id, ScoringResult())


class MockContactDiscovery(ContactDiscovery):
    """Records requests and returns a fixed contact list."""

    name = "mock"

    def __init__(self, contacts: Optional[list[BuyerContact]] = None, fail: bool = False):
        self._contacts = contacts or []
        self.fail = fail
        self.requested: list[str] = []

    async def discover(self, buyer_id: str) -> list[BuyerContact]:
        self.requested.append(buyer_id)
        if self.fail:
            raise OracleError(f"Mock contact discovery failure for {buyer_id}")
        return [c.model_copy(update={"id": new_id(), "buyer_id": buyer_id}) for c in self._contacts]
