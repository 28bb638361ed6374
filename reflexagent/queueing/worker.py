"""Batch queue worker with bounded retries and dead-lettering.

Each pulled item is handled independently: a handler exception is logged,
the item is rescheduled with exponential backoff while the retry budget
lasts, and is moved to the dead-letter list afterwards. Nothing is dropped.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from reflexagent.models.queue import WorkItem, WorkStatus
from reflexagent.observability.logging import bound_context
from reflexagent.observability.metrics import dead_letters_total, work_items_failed_total
from reflexagent.queueing.backend import QueueBackend
from reflexagent.queueing.retry import RetryPolicy

_log = structlog.get_logger(component="queueing.worker")

Handler = Callable[[WorkItem], Awaitable[None]]


@dataclass(frozen=True)
class BatchResult:
    pulled: int = 0
    processed: int = 0
    retried: int = 0
    dead: int = 0


class QueueWorker:
    """Pulls batches from one queue and applies *handler* to each item.

    Args:
        queue:             Queue name.
        backend:           Queue backend shared with the admission controller.
        handler:           Async callable; raising marks the attempt failed.
        batch_size:        Items pulled per iteration.
        retry:             Retry policy.
        poll_interval:     Sleep between non-empty or early-empty batches.
        idle_delay:        Sleep once ``max_empty_batches`` consecutive empty
                           batches have been seen.
        max_empty_batches: Consecutive empty batches before backing off.
    """

    def __init__(
        self,
        queue: str,
        backend: QueueBackend,
        handler: Handler,
        batch_size: int = 10,
        retry: RetryPolicy | None = None,
        poll_interval: float = 0.5,
        idle_delay: float = 5.0,
        max_empty_batches: int = 3,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.queue = queue
        self._backend = backend
        self._handler = handler
        self._batch_size = batch_size
        self._retry = retry or RetryPolicy()
        self._poll_interval = poll_interval
        self._idle_delay = idle_delay
        self._max_empty_batches = max_empty_batches
        self._empty_batches = 0
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def empty_batches(self) -> int:
        return self._empty_batches

    async def run_batch(self, now: datetime | None = None) -> BatchResult:
        """Process one batch. Never raises for handler failures."""
        now = now or datetime.now(tz=UTC)
        items = await self._backend.pull(self.queue, self._batch_size, now)
        processed = retried = dead = 0
        for item in items:
            outcome = await self._process(item, now)
            if outcome is WorkStatus.PROCESSED:
                processed += 1
            elif outcome is WorkStatus.QUEUED:
                retried += 1
            else:
                dead += 1
        self._empty_batches = 0 if items else self._empty_batches + 1
        return BatchResult(pulled=len(items), processed=processed, retried=retried, dead=dead)

    async def _process(self, item: WorkItem, now: datetime) -> WorkStatus:
        item = item.transition(WorkStatus.PROCESSING, attempts=item.attempts + 1)
        with bound_context(queue=self.queue, item_id=item.item_id, attempt=item.attempts):
            try:
                await self._handler(item)
            except Exception as exc:
                return await self._fail(item, exc, now)
            item.transition(WorkStatus.PROCESSED)
            _log.debug("work_item_processed")
            return WorkStatus.PROCESSED

    async def _fail(self, item: WorkItem, exc: Exception, now: datetime) -> WorkStatus:
        failed = item.transition(WorkStatus.FAILED, last_error=f"{type(exc).__name__}: {exc}")
        work_items_failed_total.labels(queue=self.queue).inc()
        if self._retry.should_retry(failed.attempts):
            delay = self._retry.delay(failed.attempts)
            _log.warning(
                "work_item_failed_retrying",
                error=failed.last_error,
                retry_in_seconds=delay.total_seconds(),
                max_retries=self._retry.max_retries,
            )
            await self._backend.push(failed.transition(WorkStatus.QUEUED, available_at=now + delay))
            return WorkStatus.QUEUED

        _log.error("work_item_dead_lettered", error=failed.last_error, attempts=failed.attempts)
        dead_letters_total.labels(queue=self.queue).inc()
        await self._backend.dead_letter(failed.transition(WorkStatus.DEAD))
        return WorkStatus.DEAD

    def next_delay(self, result: BatchResult) -> float:
        """Seconds to wait before the next batch."""
        if result.pulled:
            return 0.0
        if self._empty_batches >= self._max_empty_batches:
            self._empty_batches = 0
            return self._idle_delay
        return self._poll_interval

    async def run(self) -> None:
        self._running = True
        _log.info("queue_worker_started", queue=self.queue, batch_size=self._batch_size)
        while self._running:
            result = await self.run_batch()
            delay = self.next_delay(result)
            if delay:
                await asyncio.sleep(delay)
            else:
                await asyncio.sleep(0)

    def start(self) -> asyncio.Task[None]:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name=f"worker-{self.queue}")
        return self._task

    async def stop(self) -> None:
        self._running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        _log.info("queue_worker_stopped", queue=self.queue)
