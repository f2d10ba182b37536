"""Extraction source ranking and per-field provenance."""

from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Union

from pydantic import BaseModel, Field, field_validator

from dealflow.errors import InvalidSourceError


class FieldSource(str, Enum):
    """Where a field value came from."""

    TRANSCRIPT = "transcript"
    NOTES = "notes"
    WEBSITE = "website"
    CSV = "csv"
    MANUAL = "manual"

    @property
    def rank(self) -> int:
        return SOURCE_PRIORITY[self]

    @classmethod
    def parse(cls, value: Union["FieldSource", str]) -> "FieldSource":
        """Coerce a string to a FieldSource, raising InvalidSourceError if unknown."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise InvalidSourceError(
            f"Unknown extraction source: {value!r}",
            context={"allowed": [s.value for s in cls]},
        )


# Higher wins; equal rank may refresh
SOURCE_PRIORITY = MappingProxyType({
    FieldSource.TRANSCRIPT: 100,
    FieldSource.NOTES: 80,
    FieldSource.WEBSITE: 60,
    FieldSource.CSV: 40,
    FieldSource.MANUAL: 20,
})


class FieldProvenance(BaseModel):
    """Last writer of a single profile field."""

    source: FieldSource = Field(description="Source that last wrote the field")
    extracted_at: datetime = Field(description="Timestamp of the evidence behind the value")

    model_config = {"frozen": True}

    @field_validator("extracted_at")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
