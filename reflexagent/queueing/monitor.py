"""Periodic queue depth reporting.

Depths are published to the ``queue_depth`` gauge on every sample but only
logged when something changed: the first sample, a backpressure flip, a
depth moving by more than ``change_tolerance``, or after ``silent_reports``
unchanged samples.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass

import structlog

from reflexagent.observability.metrics import queue_depth
from reflexagent.queueing.admission import QueueAdmissionController

_log = structlog.get_logger(component="queueing.monitor")


@dataclass(frozen=True)
class QueueStats:
    depths: dict[str, int]
    backpressure: bool


class QueueMonitor:
    def __init__(
        self,
        admission: QueueAdmissionController,
        interval_seconds: float = 30.0,
        change_tolerance: int = 10,
        silent_reports: int = 10,
    ) -> None:
        self._admission = admission
        self._interval = interval_seconds
        self._tolerance = change_tolerance
        self._silent_reports = silent_reports
        self._previous: QueueStats | None = None
        self._unchanged = 0
        self._task: asyncio.Task[None] | None = None

    async def report(self) -> tuple[QueueStats, bool]:
        """Sample depths once. Returns the stats and whether they were logged."""
        depths = await self._admission.queue_depths()
        stats = QueueStats(depths=depths, backpressure=bool(self._admission.saturated(depths)))
        for name, depth in depths.items():
            queue_depth.labels(queue=name).set(depth)

        logged = self._should_log(stats)
        if logged:
            _log.info("queue_depths", backpressure=stats.backpressure, **stats.depths)
            self._unchanged = 0
        else:
            self._unchanged += 1
        self._previous = stats
        return stats, logged

    def _should_log(self, stats: QueueStats) -> bool:
        previous = self._previous
        if previous is None or self._unchanged >= self._silent_reports:
            return True
        if previous.backpressure != stats.backpressure:
            return True
        return any(
            abs(stats.depths.get(name, 0) - depth) > self._tolerance for name, depth in previous.depths.items()
        )

    async def run(self) -> None:
        while True:
            try:
                await self.report()
            except Exception as exc:
                _log.error("queue_monitor_report_failed", error=str(exc))
            await asyncio.sleep(self._interval)

    def start(self) -> asyncio.Task[None]:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="queue-monitor")
        return self._task

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
