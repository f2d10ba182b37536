"""Source-priority merge of extracted field values onto a profile record."""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Any, Optional, Union

from pydantic import TypeAdapter, ValidationError

from dealflow.errors import InvalidPatchError
from dealflow.models import FieldSource, ProfileRecord, is_empty_value
from dealflow.models.profiles import as_utc, utcnow
from .provenance import ProvenanceStore

logger = logging.getLogger(__name__)

# Values that carry no information, compared trimmed and lowercased
PLACEHOLDER_VALUES = frozenset({"not specified", "n/a", "na", "unknown", "none", "tbd"})

SKIP_UNKNOWN_FIELD = "unknown_field"
SKIP_EMPTY = "empty"
SKIP_PLACEHOLDER = "placeholder"
SKIP_INVALID = "invalid_value"
SKIP_LOWER_PRIORITY = "lower_priority"


@dataclass
class MergeResult:
    """Outcome of applying one patch."""

    record: ProfileRecord
    applied_fields: list[str] = field(default_factory=list)
    skipped_fields: dict[str, str] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return bool(self.applied_fields)


def is_placeholder(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower() in PLACEHOLDER_VALUES


@lru_cache(maxsize=None)
def _field_adapter(model: type, name: str) -> TypeAdapter:
    return TypeAdapter(model.model_fields[name].annotation)


class MergeEngine:
    """Apply a field patch from one source without clobbering higher-trust data.

    Per field: empty and placeholder values are dropped, an empty current
    value always accepts, and a populated one accepts only from a source of
    equal or higher rank. Lists are replaced wholesale. The input record is
    never mutated.
    """

    def apply(
        self,
        record: ProfileRecord,
        patch: Mapping[str, Any],
        source: Union[FieldSource, str],
        evidence_timestamp: Optional[datetime] = None,
        evidence: Optional[Mapping[str, str]] = None,
    ) -> MergeResult:
        source = FieldSource.parse(source)
        self._validate_patch(patch)
        extracted_at = as_utc(evidence_timestamp) if evidence_timestamp else utcnow()

        updated = record.model_copy(deep=True)
        provenance = ProvenanceStore(updated)
        result = MergeResult(record=updated)
        values: dict[str, Any] = {}

        for name in sorted(patch):
            if name not in record.MERGEABLE_FIELDS:
                result.skipped_fields[name] = SKIP_UNKNOWN_FIELD
                continue

            cleaned, reason = self.clean_value(patch[name])
            if reason:
                result.skipped_fields[name] = reason
                continue

            try:
                value = _field_adapter(type(record), name).validate_python(cleaned)
            except ValidationError:
                logger.debug(f"Invalid value for {name}: {cleaned!r}")
                result.skipped_fields[name] = SKIP_INVALID
                continue

            if not provenance.can_overwrite(name, source):
                result.skipped_fields[name] = SKIP_LOWER_PRIORITY
                continue

            values[name] = value
            result.applied_fields.append(name)

        # Values and provenance land together
        for name, value in values.items():
            setattr(updated, name, value)
            provenance.record_write(name, source, extracted_at)
            quote = (evidence or {}).get(name)
            if quote:
                updated.extraction_evidence[name] = quote
            else:
                updated.extraction_evidence.pop(name, None)

        if values:
            updated.updated_at = extracted_at

        if result.skipped_fields:
            logger.debug(
                f"Merge from {source.value} on {record.id}: "
                f"applied={result.applied_fields} skipped={result.skipped_fields}"
            )
        return result

    @staticmethod
    def clean_value(value: Any) -> tuple[Any, Optional[str]]:
        """Strip a raw value; return (value, skip reason or None)."""
        if is_placeholder(value):
            return None, SKIP_PLACEHOLDER

        if isinstance(value, str):
            value = value.strip()
            return (None, SKIP_EMPTY) if not value else (value, None)

        if isinstance(value, (list, tuple, set, frozenset)):
            items = []
            dropped_placeholder = False
            for item in value:
                if is_placeholder(item):
                    dropped_placeholder = True
                    continue
                if is_empty_value(item):
                    continue
                items.append(item.strip() if isinstance(item, str) else item)
            if not items:
                return None, SKIP_PLACEHOLDER if dropped_placeholder else SKIP_EMPTY
            return items, None

        if is_empty_value(value):
            return None, SKIP_EMPTY
        return value, None

    @staticmethod
    def _validate_patch(patch: Any):
        if not isinstance(patch, Mapping):
            raise InvalidPatchError(
                "Field patch must be a mapping of field name to value",
                context={"patch_type": type(patch).__name__},
            )
        bad_keys = [key for key in patch if not isinstance(key, str)]
        if bad_keys:
            raise InvalidPatchError(
                "Field patch keys must be strings",
                context={"bad_keys": [repr(k) for k in bad_keys]},
            )
