"""Field merging, provenance and buyer deduplication."""

from .provenance import ProvenanceStore
from .merge import MergeEngine, MergeResult
from .locks import RecordLocks
from .dedupe import DedupeEngine, DedupeReport, DuplicateGroup, normalize_domain, normalize_name

__all__ = [
    "ProvenanceStore",
    "MergeEngine",
    "MergeResult",
    "RecordLocks",
    "DedupeEngine",
    "DedupeReport",
    "DuplicateGroup",
    "normalize_domain",
    "normalize_name",
]
