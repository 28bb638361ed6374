"""Queue admission under a backpressure policy.

``enqueue_raw_event`` fails fast with QueueBackpressureError when any queue
is at or above its configured maximum depth. The error is a "retry later"
signal for the ingestion boundary (e.g. an HTTP 503), not a crash, and a
rejected call leaves every queue untouched.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog

from reflexagent.models.events import Event
from reflexagent.models.metrics import Metric
from reflexagent.models.queue import WorkItem, WorkStatus
from reflexagent.observability.metrics import events_ingested_total, queue_rejections_total
from reflexagent.queueing.backend import QueueBackend

_log = structlog.get_logger(component="queueing.admission")


class QueueName(StrEnum):
    RAW_EVENTS = "raw_events"
    EVENT_PROCESSING = "event_processing"
    METRIC_CALCULATION = "metric_calculation"
    ANOMALY_DETECTION = "anomaly_detection"


class QueueBackpressureError(Exception):
    """Raised instead of enqueueing when a queue is saturated."""

    def __init__(self, queue: str, depths: Mapping[str, int], saturated: list[str]) -> None:
        super().__init__(f"Queue backpressure rejecting {queue}: saturated {', '.join(saturated)}")
        self.queue = queue
        self.depths = dict(depths)
        self.saturated = saturated


class QueueAdmissionController:
    """QueuePort implementation over a QueueBackend.

    Args:
        backend:    Source of truth for queue contents and depths.
        max_depths: Queue name -> maximum depth. Every QueueName must be present.
    """

    def __init__(self, backend: QueueBackend, max_depths: Mapping[str, int]) -> None:
        missing = [q.value for q in QueueName if q.value not in max_depths]
        if missing:
            raise ValueError(f"No maximum depth configured for queues: {missing}")
        self._backend = backend
        self._max_depths = {q.value: int(max_depths[q.value]) for q in QueueName}

    @property
    def max_depths(self) -> dict[str, int]:
        return dict(self._max_depths)

    async def queue_depths(self) -> dict[str, int]:
        """Live depths read from the backend on every call."""
        return {name: await self._backend.depth(name) for name in self._max_depths}

    def saturated(self, depths: Mapping[str, int]) -> list[str]:
        return [name for name, limit in self._max_depths.items() if depths.get(name, 0) >= limit]

    async def is_backpressured(self) -> bool:
        """True iff at least one queue's depth is at or above its maximum."""
        return bool(self.saturated(await self.queue_depths()))

    async def enqueue_raw_event(self, payload: Any, source: str, event_type: str | None = None) -> str:
        """Admit a raw webhook payload, or raise QueueBackpressureError.

        Returns:
            The id of the queued work item.
        """
        depths = await self.queue_depths()
        saturated = self.saturated(depths)
        if saturated:
            self._reject(QueueName.RAW_EVENTS, depths, saturated)
        item_id = await self._push(QueueName.RAW_EVENTS, payload, source, event_type)
        events_ingested_total.labels(source=source).inc()
        _log.debug("raw_event_enqueued", item_id=item_id, source=source, event_type=event_type)
        return item_id

    async def enqueue_metric_calculation(self, event: Event) -> str:
        await self._check_capacity(QueueName.METRIC_CALCULATION)
        return await self._push(
            QueueName.METRIC_CALCULATION,
            {"event_id": event.event_id},
            event.source,
            event.event_type,
        )

    async def enqueue_anomaly_detection(self, metric: Metric) -> str:
        await self._check_capacity(QueueName.ANOMALY_DETECTION)
        return await self._push(
            QueueName.ANOMALY_DETECTION,
            {"metric_id": metric.metric_id},
            metric.source,
            None,
        )

    async def _check_capacity(self, queue: QueueName) -> None:
        """Internal stages only check their own queue."""
        depth = await self._backend.depth(queue.value)
        if depth >= self._max_depths[queue.value]:
            self._reject(queue, {queue.value: depth}, [queue.value])

    def _reject(self, queue: QueueName, depths: Mapping[str, int], saturated: list[str]) -> None:
        queue_rejections_total.labels(queue=queue.value).inc()
        _log.warning(
            "queue_backpressure_rejected",
            queue=queue.value,
            saturated=saturated,
            depths=dict(depths),
        )
        raise QueueBackpressureError(queue.value, depths, saturated)

    async def _push(self, queue: QueueName, payload: Any, source: str, event_type: str | None) -> str:
        item = WorkItem(queue=queue.value, payload=payload, source=source, event_type=event_type)
        item = item.transition(WorkStatus.QUEUED, enqueued_at=datetime.now(tz=UTC))
        await self._backend.push(item)
        return item.item_id
