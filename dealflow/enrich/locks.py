"""Single-writer-per-record serialization for profile merges."""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator


class RecordLocks:
    """One asyncio lock per (kind, record id).

    Merges to the same record run one at a time so the priority comparison
    always sees the latest stored state; different records never wait on
    each other. Locks are dropped once nobody holds or awaits them.
    """

    def __init__(self):
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._waiters: dict[tuple[str, str], int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, kind: str, record_id: str) -> AsyncIterator[None]:
        key = (kind, record_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def is_locked(self, kind: str, record_id: str) -> bool:
        lock = self._locks.get((kind, record_id))
        return bool(lock and lock.locked())

    def __len__(self) -> int:
        return len(self._locks)
