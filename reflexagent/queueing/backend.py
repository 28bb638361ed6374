"""Queue backend contract and its in-process implementation.

Depths reported by the backend are authoritative: the admission controller
reads them on every call and keeps no copy. Items scheduled for a delayed
retry still count towards their queue's depth.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from collections import deque
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

from reflexagent.models.queue import WorkItem


@runtime_checkable
class QueueBackend(Protocol):
    async def push(self, item: WorkItem) -> None: ...

    async def pull(self, queue: str, limit: int, now: datetime | None = None) -> list[WorkItem]:
        """Remove and return up to *limit* items that are due at *now*."""
        ...

    async def depth(self, queue: str) -> int: ...

    async def dead_letter(self, item: WorkItem) -> None: ...

    async def dead_letters(self, queue: str) -> list[WorkItem]: ...


class InMemoryQueueBackend:
    """FIFO queues with a per-queue delay heap for scheduled retries."""

    def __init__(self, queues: Iterable[str] = ()) -> None:
        self._lock = asyncio.Lock()
        self._ready: dict[str, deque[WorkItem]] = {name: deque() for name in queues}
        self._delayed: dict[str, list[tuple[datetime, int, WorkItem]]] = {}
        self._dead: dict[str, list[WorkItem]] = {}
        self._seq = itertools.count()

    async def push(self, item: WorkItem) -> None:
        async with self._lock:
            if item.available_at is not None:
                heapq.heappush(
                    self._delayed.setdefault(item.queue, []),
                    (item.available_at, next(self._seq), item),
                )
            else:
                self._ready.setdefault(item.queue, deque()).append(item)

    async def pull(self, queue: str, limit: int, now: datetime | None = None) -> list[WorkItem]:
        now = now or datetime.now(tz=UTC)
        async with self._lock:
            ready = self._ready.setdefault(queue, deque())
            delayed = self._delayed.setdefault(queue, [])
            while delayed and delayed[0][0] <= now:
                ready.append(heapq.heappop(delayed)[2])
            batch: list[WorkItem] = []
            while ready and len(batch) < limit:
                batch.append(ready.popleft())
            return batch

    async def depth(self, queue: str) -> int:
        return len(self._ready.get(queue, ())) + len(self._delayed.get(queue, ()))

    async def dead_letter(self, item: WorkItem) -> None:
        async with self._lock:
            self._dead.setdefault(item.queue, []).append(item)

    async def dead_letters(self, queue: str) -> list[WorkItem]:
        return list(self._dead.get(queue, ()))
