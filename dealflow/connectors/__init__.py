"""External collaborators: extraction and scoring oracles, contact discovery."""

from .base import (
    ContactDiscovery,
    ExtractionOracle,
    ExtractionResult,
    ScoringOracle,
    ScoringResult,
)
from .claude import ClaudeClient, ClaudeExtractionOracle, ClaudeScoringOracle
from .contacts import HttpContactDiscovery
from .mock import MockContactDiscovery, MockExtractionOracle, MockScoringOracle

__all__ = [
    "ContactDiscovery",
    "ExtractionOracle",
    "ExtractionResult",
    "ScoringOracle",
    "ScoringResult",
    "ClaudeClient",
    "ClaudeExtractionOracle",
    "ClaudeScoringOracle",
    "HttpContactDiscovery",
    "MockContactDiscovery",
    "MockExtractionOracle",
    "MockScoringOracle",
]
