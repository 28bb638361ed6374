"""Queue handlers that make up the processing pipeline.

raw_events          -> parse, persist the Event, schedule metric calculation
metric_calculation  -> classify the Event, record its observations
anomaly_detection   -> evaluate one aggregate metric

Aggregation between the last two stages is done by the scheduled
AggregationJob. Every handler raises on failure so the worker's bounded
retry and dead-letter handling applies uniformly.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog

from reflexagent.aggregation.aggregator import record_observations
from reflexagent.classifiers.classifier import MetricClassifier
from reflexagent.detection.detector import AnomalyDetector
from reflexagent.ingestion.parser import parse_payload
from reflexagent.models.queue import WorkItem
from reflexagent.observability.metrics import observations_total
from reflexagent.ports import QueuePort, StoragePort
from reflexagent.queueing.admission import QueueName
from reflexagent.storage import require

_log = structlog.get_logger(component="pipeline")


class Pipeline:
    def __init__(
        self,
        storage: StoragePort,
        queue: QueuePort,
        classifier: MetricClassifier,
        detector: AnomalyDetector,
    ) -> None:
        self._storage = storage
        self._queue = queue
        self._classifier = classifier
        self._detector = detector

    def handlers(self) -> dict[str, Callable[[WorkItem], Awaitable[None]]]:
        return {
            QueueName.RAW_EVENTS.value: self.handle_raw_event,
            QueueName.METRIC_CALCULATION.value: self.handle_metric_calculation,
            QueueName.ANOMALY_DETECTION.value: self.handle_anomaly_detection,
        }

    async def handle_raw_event(self, item: WorkItem) -> None:
        # The work item id doubles as the event id so a redelivered item
        # overwrites the same event instead of creating a second one.
        event = parse_payload(item.payload, item.source, item.event_type, event_id=item.item_id)
        await self._storage.save_event(event)
        await self._queue.enqueue_metric_calculation(event)
        _log.debug("raw_event_processed", event_id=event.event_id, event_name=event.name)

    async def handle_metric_calculation(self, item: WorkItem) -> None:
        event = await require("Event", item.payload["event_id"], self._storage.find_event)
        classification = self._classifier.classify(event)
        records = record_observations(event, classification.metrics)
        stored = await self._storage.save_observations(records)
        observations_total.labels(source=event.source).inc(stored)
        _log.debug(
            "observations_recorded",
            event_id=event.event_id,
            event_type=item.event_type,
            observations=len(records),
            stored=stored,
        )

    async def handle_anomaly_detection(self, item: WorkItem) -> None:
        metric = await require("Metric", item.payload["metric_id"], self._storage.find_metric)
        await self._detector.detect(metric)
