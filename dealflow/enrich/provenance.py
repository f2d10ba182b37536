"""Per-field provenance tracking on a profile record."""

from datetime import datetime
from typing import Optional, Union

from dealflow.models import FieldProvenance, FieldSource, ProfileRecord, is_empty_value


class ProvenanceStore:
    """View over a record's ``extraction_sources`` map.

    A populated field without an entry is treated as a manual entry.
    """

    def __init__(self, record: ProfileRecord):
        self.record = record

    @property
    def entries(self) -> dict[str, FieldProvenance]:
        return self.record.extraction_sources

    def source_of(self, field: str) -> Optional[FieldSource]:
        entry = self.entries.get(field)
        if entry is not None:
            return entry.source
        if is_empty_value(getattr(self.record, field, None)):
            return None
        return FieldSource.MANUAL

    def rank_of(self, field: str) -> int:
        source = self.source_of(field)
        return source.rank if source else 0

    def can_overwrite(self, field: str, source: Union[FieldSource, str]) -> bool:
        """Empty fields always accept; populated ones need equal or higher rank."""
        source = FieldSource.parse(source)
        if is_empty_value(getattr(self.record, field, None)):
            return True
        return source.rank >= self.rank_of(field)

    def protected_fields(self, source: Union[FieldSource, str]) -> list[str]:
        """Populated fields the given source is not allowed to overwrite."""
        source = FieldSource.parse(source)
        return [
            field for field in self.record.populated_fields()
            if not self.can_overwrite(field, source)
        ]

    def record_write(self, field: str, source: FieldSource, extracted_at: datetime):
        self.entries[field] = FieldProvenance(source=source, extracted_at=extracted_at)

    def drop(self, field: str):
        self.entries.pop(field, None)

    def stamp(self, source: Union[FieldSource, str], extracted_at: datetime) -> list[str]:
        """Attribute every populated, untracked field to ``source``.

        Used when a record is created from a non-manual source such as a CSV
        import.
        """
        source = FieldSource.parse(source)
        stamped = []
        if source is FieldSource.MANUAL:
            return stamped
        for field in self.record.populated_fields():
            if field not in self.entries:
                self.record_write(field, source, extracted_at)
                stamped.append(field)
        return stamped
