"""Buyer-deal match models: dimension scores, weights and user decisions."""

import math
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .profiles import new_id


DIMENSIONS = ("geography", "services", "size", "owner_goals")


class Confidence(str, Enum):
    """How much real signal backs a score."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def level(self) -> int:
        return {"low": 0, "medium": 1, "high": 2}[self.value]


class DimensionScore(BaseModel):
    """One fit dimension as reported by the scoring oracle."""

    score: float = Field(default=50.0, description="0-100, clamped")
    is_disqualified: bool = False
    reason: Optional[str] = None
    confidence: Confidence = Confidence.MEDIUM

    @field_validator("score", mode="before")
    @classmethod
    def clamp_score(cls, value):
        if value is None:
            return 50.0
        value = float(value)
        if math.isnan(value):
            return 50.0
        return min(max(value, 0.0), 100.0)

    @classmethod
    def missing(cls, dimension: str) -> "DimensionScore":
        """Neutral stand-in for a dimension the oracle did not score."""
        return cls(
            score=50.0,
            is_disqualified=False,
            reason=f"No {dimension.replace('_', ' ')} data",
            confidence=Confidence.LOW,
        )


class ScoreWeights(BaseModel):
    """Tracker-level dimension weights. None means 1.0; 0 turns a dimension off."""

    geography_weight: Optional[float] = None
    service_weight: Optional[float] = None
    size_weight: Optional[float] = None
    owner_goals_weight: Optional[float] = None

    def for_dimension(self, dimension: str) -> float:
        value = {
            "geography": self.geography_weight,
            "services": self.service_weight,
            "size": self.size_weight,
            "owner_goals": self.owner_goals_weight,
        }[dimension]
        return 1.0 if value is None else float(value)


class PassCategory(str, Enum):
    GEOGRAPHY = "geography"
    SIZE_TOO_SMALL = "size_too_small"
    SIZE_TOO_LARGE = "size_too_large"
    SERVICES = "services"
    TIMING = "timing"
    PORTFOLIO_CONFLICT = "portfolio_conflict"
    INDUSTRY = "industry"
    OTHER = "other"


class DecisionState(str, Enum):
    UNSCORED = "Unscored"
    SCORED = "Scored"
    APPROVED = "Approved"
    INTERESTED = "Interested"
    NOT_INTERESTED = "NotInterested"
    PASSED = "Passed"


class BuyerDealMatch(BaseModel):
    """Scores and user decisions for one (buyer, deal) pair."""

    id: str = Field(default_factory=new_id)
    buyer_id: str
    deal_id: str
    buyer_name: str = ""

    # Score fields
    geography_score: Optional[float] = None
    service_score: Optional[float] = None
    size_score: Optional[float] = None
    owner_goals_score: Optional[float] = None
    thesis_bonus: float = 0.0
    composite_score: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    is_disqualified: bool = False
    disqualification_reasons: list[str] = Field(default_factory=list)
    data_completeness: Optional[Confidence] = None
    needs_review: bool = False
    review_reason: Optional[str] = None
    fit_reasoning: Optional[str] = None
    scored_at: Optional[datetime] = None

    # Decision fields
    selected_for_outreach: bool = False
    interested: Optional[bool] = None
    interested_at: Optional[datetime] = None
    passed_on_deal: bool = False
    pass_category: Optional[PassCategory] = None
    pass_reason: Optional[str] = None
    pass_notes: Optional[str] = None
    passed_at: Optional[datetime] = None

    @property
    def decision_state(self) -> DecisionState:
        if self.passed_on_deal:
            return DecisionState.PASSED
        if self.interested is True:
            return DecisionState.INTERESTED
        if self.interested is False:
            return DecisionState.NOT_INTERESTED
        if self.selected_for_outreach:
            return DecisionState.APPROVED
        if self.composite_score is None:
            return DecisionState.UNSCORED
        return DecisionState.SCORED


SCORE_FIELDS = frozenset({
    "buyer_name",
    "geography_score",
    "service_score",
    "size_score",
    "owner_goals_score",
    "thesis_bonus",
    "composite_score",
    "is_disqualified",
    "disqualification_reasons",
    "data_completeness",
    "needs_review",
    "review_reason",
    "fit_reasoning",
    "scored_at",
})

DECISION_FIELDS = frozenset({
    "selected_for_outreach",
    "interested",
    "interested_at",
    "passed_on_deal",
    "pass_category",
    "pass_reason",
    "pass_notes",
    "passed_at",
})
