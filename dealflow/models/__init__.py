"""Data models for the deal-flow core."""

from .provenance import FieldSource, FieldProvenance, SOURCE_PRIORITY
from .profiles import (
    Tracker,
    ProfileRecord,
    BuyerProfile,
    DealProfile,
    DealStatus,
    BuyerContact,
    BuyerTranscript,
    BUYER_MERGEABLE_FIELDS,
    DEAL_MERGEABLE_FIELDS,
    is_empty_value,
)
from .checkpoint import BulkCheckpoint, CheckpointStatus
from .match import (
    DIMENSIONS,
    BuyerDealMatch,
    Confidence,
    DecisionState,
    DimensionScore,
    PassCategory,
    ScoreWeights,
    SCORE_FIELDS,
    DECISION_FIELDS,
)

__all__ = [
    "BulkCheckpoint",
    "CheckpointStatus",
    "FieldSource",
    "FieldProvenance",
    "SOURCE_PRIORITY",
    "Tracker",
    "ProfileRecord",
    "BuyerProfile",
    "DealProfile",
    "DealStatus",
    "BuyerContact",
    "BuyerTranscript",
    "BUYER_MERGEABLE_FIELDS",
    "DEAL_MERGEABLE_FIELDS",
    "is_empty_value",
    "DIMENSIONS",
    "BuyerDealMatch",
    "Confidence",
    "DecisionState",
    "DimensionScore",
    "PassCategory",
    "ScoreWeights",
    "SCORE_FIELDS",
    "DECISION_FIELDS",
]
