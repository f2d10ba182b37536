"""Composite fit score and ranking for buyer-deal matches."""

import logging
import math
from dataclasses import dataclass
from typing import Mapping, Optional, Union

from dealflow.errors import InvalidWeightsError
from dealflow.models import (
    DIMENSIONS,
    BuyerDealMatch,
    Confidence,
    DimensionScore,
    ScoreWeights,
)
from dealflow.models.profiles import utcnow

logger = logging.getLogger(__name__)

# Match column for each dimension
SCORE_COLUMNS = {
    "geography": "geography_score",
    "services": "service_score",
    "size": "size_score",
    "owner_goals": "owner_goals_score",
}

MAX_THESIS_BONUS = 20.0

STRONG_FIT = 75.0
MODERATE_FIT = 50.0
UNCERTAIN_RANGE = (40.0, 60.0)

INSUFFICIENT_DATA = "Insufficient data for confident scoring"
MULTIPLE_LOW_CONFIDENCE = "Multiple scoring categories have low confidence"
UNCERTAIN_SCORE = "Score in uncertain range"


@dataclass
class ScoreSummary:
    """Counts across one deal's match list."""

    total: int = 0
    strong: int = 0
    moderate: int = 0
    long_shot: int = 0
    disqualified: int = 0
    needs_review: int = 0
    low_completeness: int = 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "strong": self.strong,
            "moderate": self.moderate,
            "long_shot": self.long_shot,
            "disqualified": self.disqualified,
            "needs_review": self.needs_review,
            "low_completeness": self.low_completeness,
        }


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


class ScoreAggregator:
    """Combine per-dimension fit scores into one composite and rank buyers."""

    def aggregate(
        self,
        dimensions: Mapping[str, Optional[Union[DimensionScore, dict]]],
        thesis_bonus: Optional[float] = 0.0,
        weights: Optional[ScoreWeights] = None,
        *,
        buyer_id: str,
        deal_id: str,
        buyer_name: str = "",
    ) -> BuyerDealMatch:
        """Score one buyer-deal pair.

        Missing dimensions score 50 with low confidence. The composite is the
        weighted mean over dimensions with a positive weight, plus the thesis
        bonus, bounded to 0-100. Disqualification does not zero the composite.
        """
        weights = weights or ScoreWeights()
        weight_by_dim = self._validate_weights(weights)
        scores = self._complete_dimensions(dimensions)

        weighted_sum = 0.0
        total_weight = 0.0
        for name in DIMENSIONS:
            weight = weight_by_dim[name]
            if weight <= 0:
                continue
            weighted_sum += scores[name].score * weight
            total_weight += weight

        base = _clamp(weighted_sum / total_weight, 0.0, 100.0) if total_weight else 0.0
        bonus = self._clean_bonus(thesis_bonus)
        composite = round(_clamp(base + bonus, 0.0, 100.0), 2)

        reasons = [
            scores[name].reason or f"{name.replace('_', ' ').capitalize()} disqualified"
            for name in DIMENSIONS
            if scores[name].is_disqualified
        ]
        is_disqualified = bool(reasons)

        completeness = min((scores[name].confidence for name in DIMENSIONS), key=lambda c: c.level)
        needs_review, review_reason = self._review_flag(scores, composite, is_disqualified, completeness)

        match = BuyerDealMatch(
            buyer_id=buyer_id,
            deal_id=deal_id,
            buyer_name=buyer_name,
            thesis_bonus=bonus,
            composite_score=composite,
            is_disqualified=is_disqualified,
            disqualification_reasons=reasons,
            data_completeness=completeness,
            needs_review=needs_review,
            review_reason=review_reason,
            fit_reasoning=self._fit_reasoning(composite, reasons),
            scored_at=utcnow(),
        )
        for name, column in SCORE_COLUMNS.items():
            setattr(match, column, scores[name].score)
        return match

    def rank(self, matches: list[BuyerDealMatch]) -> list[BuyerDealMatch]:
        """Qualified first, then composite desc, buyer name asc, buyer id."""
        return sorted(
            matches,
            key=lambda m: (
                m.is_disqualified,
                -(m.composite_score if m.composite_score is not None else -1.0),
                m.buyer_name.casefold(),
                m.buyer_id,
            ),
        )

    def summarize(self, matches: list[BuyerDealMatch]) -> ScoreSummary:
        summary = ScoreSummary(total=len(matches))
        for match in matches:
            if match.needs_review:
                summary.needs_review += 1
            if match.data_completeness is Confidence.LOW:
                summary.low_completeness += 1

            if match.is_disqualified:
                summary.disqualified += 1
                continue
            score = match.composite_score or 0.0
            if score >= STRONG_FIT:
                summary.strong += 1
            elif score >= MODERATE_FIT:
                summary.moderate += 1
            else:
                summary.long_shot += 1
        return summary

    @staticmethod
    def _validate_weights(weights: ScoreWeights) -> dict[str, float]:
        values = {}
        for name in DIMENSIONS:
            try:
                weight = weights.for_dimension(name)
            except (TypeError, ValueError) as e:
                raise InvalidWeightsError(f"Weight for {name} is not numeric") from e
            if math.isnan(weight) or math.isinf(weight) or weight < 0:
                raise InvalidWeightsError(
                    f"Weight for {name} must be a non-negative number",
                    context={"dimension": name, "weight": weight},
                )
            values[name] = weight
        return values

    @staticmethod
    def _complete_dimensions(
        dimensions: Mapping[str, Optional[Union[DimensionScore, dict]]],
    ) -> dict[str, DimensionScore]:
        completed = {}
        for name in DIMENSIONS:
            value = dimensions.get(name)
            if value is None:
                completed[name] = DimensionScore.missing(name)
            elif isinstance(value, DimensionScore):
                completed[name] = value
            else:
                completed[name] = DimensionScore.model_validate(value)
        return completed

    @staticmethod
    def _clean_bonus(value: Optional[float]) -> float:
        if value is None:
            return 0.0
        value = float(value)
        if math.isnan(value):
            return 0.0
        return _clamp(value, 0.0, MAX_THESIS_BONUS)

    @staticmethod
    def _review_flag(
        scores: dict[str, DimensionScore],
        composite: float,
        is_disqualified: bool,
        completeness: Confidence,
    ) -> tuple[bool, Optional[str]]:
        if completeness is Confidence.LOW:
            low_count = sum(1 for s in scores.values() if s.confidence is Confidence.LOW)
            if low_count >= 2:
                return True, MULTIPLE_LOW_CONFIDENCE
            return True, INSUFFICIENT_DATA
        low, high = UNCERTAIN_RANGE
        if not is_disqualified and low <= composite < high:
            return True, UNCERTAIN_SCORE
        return False, None

    @staticmethod
    def _fit_reasoning(composite: float, reasons: list[str]) -> str:
        if reasons:
            return f"Disqualified: {reasons[0]}"
        if composite >= STRONG_FIT:
            return "Strong fit"
        if composite >= MODERATE_FIT:
            return "Moderate fit"
        return "Long shot"
