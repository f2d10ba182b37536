"""Durable progress record for interruptible bulk operations."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from .profiles import as_utc, utcnow


class CheckpointStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BulkCheckpoint(BaseModel):
    """Which ids a bulk operation has finished, keyed by (operation, collection)."""

    operation_id: str
    collection_id: str
    status: CheckpointStatus = CheckpointStatus.RUNNING
    processed_ids: list[str] = Field(default_factory=list)
    failed_ids: list[str] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("updated_at")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    def is_processed(self, item_id: str) -> bool:
        return item_id in self.processed_ids

    def mark_processed(self, item_id: str):
        if item_id not in self.processed_ids:
            self.processed_ids.append(item_id)
        if item_id in self.failed_ids:
            self.failed_ids.remove(item_id)

    def mark_failed(self, item_id: str):
        if item_id not in self.failed_ids:
            self.failed_ids.append(item_id)
