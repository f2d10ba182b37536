"""Abstract interfaces for the external collaborators the core consumes."""

from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel, Field

from dealflow.models import (
    BuyerContact,
    BuyerProfile,
    DealProfile,
    DimensionScore,
    FieldSource,
)


class ExtractionResult(BaseModel):
    """Structured field candidates pulled from one source document."""

    fields: dict[str, Any] = Field(default_factory=dict, description="field name -> value")
    evidence: dict[str, str] = Field(default_factory=dict, description="field name -> supporting quote")
    confidence: dict[str, float] = Field(default_factory=dict, description="field name -> 0-1")


class ScoringResult(BaseModel):
    """Per-dimension fit for one buyer-deal pair. Missing dimensions stay None."""

    geography: Optional[DimensionScore] = None
    services: Optional[DimensionScore] = None
    size: Optional[DimensionScore] = None
    owner_goals: Optional[DimensionScore] = None
    thesis_bonus: float = 0.0

    def dimensions(self) -> dict[str, Optional[DimensionScore]]:
        return {
            "geography": self.geography,
            "services": self.services,
            "size": self.size,
            "owner_goals": self.owner_goals,
        }


class ExtractionOracle(ABC):
    """Turns a transcript, notes blob or website text into field candidates."""

    name: str = "base"

    @abstractmethod
    async def extract(
        self,
        source_text: str,
        source_type: FieldSource,
        entity_kind: str = "buyer",
    ) -> ExtractionResult:
        """
        Extract profile fields from unstructured text.

        Args:
            source_text: Raw document text
            source_type: Which kind of source the text came from
            entity_kind: 'buyer' or 'deal', selects the target field set

        Returns:
            Untrusted field candidates; filtering happens in the merge engine
        """
        pass


class ScoringOracle(ABC):
    """Scores one buyer against one deal on each fit dimension."""

    name: str = "base"

    @abstractmethod
    async def score(self, buyer: BuyerProfile, deal: DealProfile) -> ScoringResult:
        """
        Score a buyer-deal pair.

        Args:
            buyer: Buyer profile
            deal: Deal profile

        Returns:
            Per-dimension scores plus thesis bonus
        """
        pass


class ContactDiscovery(ABC):
    """Finds people to contact at an approved buyer."""

    name: str = "base"

    @abstractmethod
    async def discover(self, buyer_id: str) -> list[BuyerContact]:
        pass
