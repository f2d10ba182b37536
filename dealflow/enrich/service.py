"""Oracle -> merge -> persist, one record at a time."""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Union

from dealflow.config import settings as default_settings
from dealflow.connectors.base import ExtractionOracle, ExtractionResult
from dealflow.errors import InputError, OracleError
from dealflow.models import FieldSource
from dealflow.models.repository import Repository
from .locks import RecordLocks
from .merge import MergeEngine, MergeResult

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentOutcome:
    """Result of enriching one record from one source document."""

    kind: str
    record_id: str
    source: FieldSource
    status: str  # 'applied' | 'unchanged' | 'skipped'
    applied_fields: list[str] = field(default_factory=list)
    skipped_fields: dict[str, str] = field(default_factory=dict)
    low_confidence_fields: list[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "record_id": self.record_id,
            "source": self.source.value,
            "status": self.status,
            "applied_fields": self.applied_fields,
            "skipped_fields": self.skipped_fields,
            "low_confidence_fields": self.low_confidence_fields,
            "error": self.error,
        }


class EnrichmentService:
    """Apply field patches to stored profiles under a per-record lock."""

    def __init__(
        self,
        repository: Repository,
        extraction_oracle: Optional[ExtractionOracle] = None,
        locks: Optional[RecordLocks] = None,
        merge_engine: Optional[MergeEngine] = None,
        settings=None,
    ):
        self.repository = repository
        self.extraction_oracle = extraction_oracle
        self.locks = locks or RecordLocks()
        self.merge_engine = merge_engine or MergeEngine()
        self.settings = settings or default_settings

    async def apply_patch(
        self,
        kind: str,
        record_id: str,
        patch: Mapping[str, Any],
        source: Union[FieldSource, str],
        evidence_timestamp: Optional[datetime] = None,
        evidence: Optional[Mapping[str, str]] = None,
    ) -> MergeResult:
        """Load, merge and save one record while holding its lock."""
        source = FieldSource.parse(source)
        async with self.locks.hold(kind, record_id):
            record = self.repository.get_profile(kind, record_id)
            result = self.merge_engine.apply(record, patch, source, evidence_timestamp, evidence)
            if result.changed:
                self.repository.save_profile(kind, result.record)
                logger.info(
                    f"Updated {kind} {record_id} from {source.value}: {result.applied_fields}"
                )
        return result

    async def enrich_from_text(
        self,
        kind: str,
        record_id: str,
        text: str,
        source: Union[FieldSource, str],
        evidence_timestamp: Optional[datetime] = None,
    ) -> EnrichmentOutcome:
        """Run the extraction oracle on ``text`` and merge what it finds.

        Oracle failures and timeouts yield a ``skipped`` outcome; nothing is
        written. Persistence errors propagate.
        """
        source = FieldSource.parse(source)
        if source is FieldSource.MANUAL:
            raise InputError("Manual values are applied directly, not extracted")
        if self.extraction_oracle is None:
            raise InputError("No extraction oracle configured")
        if not text or not text.strip():
            return EnrichmentOutcome(kind, record_id, source, "skipped", error="Empty source text")

        # Fail fast on unknown records before spending an oracle call
        self.repository.get_profile(kind, record_id)

        try:
            extraction = await asyncio.wait_for(
                self.extraction_oracle.extract(text, source, kind),
                timeout=self.settings.oracle_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Extraction timed out for {kind} {record_id} ({source.value})")
            return EnrichmentOutcome(kind, record_id, source, "skipped", error="Extraction timed out")
        except OracleError as e:
            logger.warning(f"Extraction failed for {kind} {record_id} ({source.value}): {e}")
            return EnrichmentOutcome(kind, record_id, source, "skipped", error=e.message)
        except Exception as e:
            logger.error(f"Extraction oracle error for {kind} {record_id} ({source.value}): {e!r}")
            return EnrichmentOutcome(kind, record_id, source, "skipped", error=str(e))

        patch, low_confidence = self._confident_fields(extraction)
        if not patch:
            return EnrichmentOutcome(
                kind, record_id, source, "skipped",
                low_confidence_fields=low_confidence,
                error="No confident fields extracted",
            )

        result = await self.apply_patch(
            kind,
            record_id,
            patch,
            source,
            evidence_timestamp=evidence_timestamp,
            evidence=extraction.evidence,
        )
        return EnrichmentOutcome(
            kind=kind,
            record_id=record_id,
            source=source,
            status="applied" if result.changed else "unchanged",
            applied_fields=result.applied_fields,
            skipped_fields=result.skipped_fields,
            low_confidence_fields=low_confidence,
        )

    def _confident_fields(self, extraction: ExtractionResult) -> tuple[dict[str, Any], list[str]]:
        # Fields without a confidence entry are kept
        threshold = self.settings.extraction_min_confidence
        patch, dropped = {}, []
        for name, value in extraction.fields.items():
            confidence = extraction.confidence.get(name)
            if confidence is not None and confidence < threshold:
                dropped.append(name)
                continue
            patch[name] = value
        return patch, sorted(dropped)
