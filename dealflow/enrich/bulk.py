"""Sequential bulk enrichment with a durable, resumable checkpoint."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from dealflow.config import settings
from dealflow.errors import PersistenceError
from dealflow.models import BulkCheckpoint, CheckpointStatus
from dealflow.models.repository import Repository

logger = logging.getLogger(__name__)

# Called with one item id; returning False or an object whose status is
# 'skipped' counts the item as skipped, anything else as succeeded.
BulkWorker = Callable[[str], Awaitable[Any]]


@dataclass
class BulkTally:
    """Counts for one bulk run."""

    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False
    failed_ids: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "failed_ids": self.failed_ids,
            "errors": self.errors,
        }


def _is_skip(result: Any) -> bool:
    if result is False:
        return True
    return getattr(result, "status", None) == "skipped"


class BulkEnrichmentRunner:
    """Run a worker over many ids, one at a time, checkpointing after each.

    A run interrupted by cancellation or a crash resumes from the stored
    checkpoint: processed ids are skipped, failed ids are retried.
    """

    def __init__(self, repository: Repository, delay: Optional[float] = None):
        self.repository = repository
        self.delay = settings.bulk_item_delay_seconds if delay is None else delay

    async def run(
        self,
        operation_id: str,
        collection_id: str,
        item_ids: list[str],
        worker: BulkWorker,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BulkTally:
        checkpoint = self.repository.get_checkpoint(operation_id, collection_id)
        if checkpoint is None:
            checkpoint = BulkCheckpoint(operation_id=operation_id, collection_id=collection_id)
        elif checkpoint.processed_ids:
            logger.info(
                f"Resuming {operation_id} on {collection_id}: "
                f"{len(checkpoint.processed_ids)} already processed"
            )
        checkpoint.status = CheckpointStatus.RUNNING
        self.repository.save_checkpoint(checkpoint)

        tally = BulkTally()
        pending = []
        for item_id in dict.fromkeys(item_ids):
            if checkpoint.is_processed(item_id):
                tally.skipped += 1
            else:
                pending.append(item_id)

        for index, item_id in enumerate(pending):
            if cancel_event is not None and cancel_event.is_set():
                tally.cancelled = True
                break

            try:
                result = await worker(item_id)
            except PersistenceError:
                raise
            except Exception as e:
                logger.error(f"{operation_id}: item {item_id} failed: {e}")
                checkpoint.mark_failed(item_id)
                tally.failed += 1
                tally.failed_ids.append(item_id)
                tally.errors[item_id] = str(e)
            else:
                checkpoint.mark_processed(item_id)
                if _is_skip(result):
                    tally.skipped += 1
                else:
                    tally.succeeded += 1

            self.repository.save_checkpoint(checkpoint)

            if self.delay and index < len(pending) - 1:
                await asyncio.sleep(self.delay)

        checkpoint.status = CheckpointStatus.CANCELLED if tally.cancelled else CheckpointStatus.COMPLETED
        self.repository.save_checkpoint(checkpoint)

        logger.info(
            f"{operation_id} on {collection_id}: {tally.succeeded} succeeded, "
            f"{tally.failed} failed, {tally.skipped} skipped"
            + (" (cancelled)" if tally.cancelled else "")
        )
        return tally
