"""Composite scoring, ranking and per-deal matching sessions."""

from .aggregator import ScoreAggregator, ScoreSummary
from .session import MatchingResult, MatchingSession

__all__ = ["ScoreAggregator", "ScoreSummary", "MatchingResult", "MatchingSession"]
