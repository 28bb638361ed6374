"""Time-bucketed metric aggregation.

Aggregation is a sum per ``(name, dimensions, bucket)`` and therefore
independent of the order observations arrive in. Each increment is keyed by
``<granularity>:<observation dedup key>`` so re-aggregating an observation
that was already applied to a bucket leaves the bucket unchanged.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime, timedelta

import structlog

from reflexagent.models.events import Event
from reflexagent.models.metrics import (
    Granularity,
    Metric,
    MetricObservation,
    RecordedObservation,
    dimension_key,
)
from reflexagent.observability.metrics import aggregates_updated_total, aggregation_skipped_total
from reflexagent.ports import CachePort, QueuePort, StoragePort
from reflexagent.queueing.admission import QueueBackpressureError
from reflexagent.storage.errors import ValidationError

_log = structlog.get_logger(component="aggregation")


def combine_observations(observations: Iterable[MetricObservation]) -> list[MetricObservation]:
    """Sum observations that share a name and dimension set.

    One event may legitimately emit the same ``(name, dimensions)`` pair more
    than once (two ``feat`` commits in one push). Combining them first keeps
    the per-event dedup key unique.
    """
    combined: dict[tuple[str, str], MetricObservation] = {}
    for obs in observations:
        key = (obs.name, dimension_key(dict(obs.dimensions)))
        prior = combined.get(key)
        if prior is None:
            combined[key] = obs
            continue
        try:
            combined[key] = MetricObservation(
                name=prior.name,
                value=prior.value + obs.value,
                dimensions=prior.dimensions,
                timestamp=prior.timestamp,
            )
        except ValueError:
            # Sum overflowed; keep the partial total.
            _log.warning("observation_sum_overflow", metric_name=obs.name, value=obs.value)
    return list(combined.values())


def record_observations(event: Event, observations: Iterable[MetricObservation]) -> list[RecordedObservation]:
    return [
        RecordedObservation(
            event_id=event.event_id,
            source=event.source,
            observed_at=obs.timestamp or event.timestamp,
            observation=obs,
        )
        for obs in combine_observations(observations)
    ]


class MetricAggregator:
    """Applies recorded observations to aggregate buckets in storage."""

    def __init__(self, storage: StoragePort, cache: CachePort | None = None) -> None:
        self._storage = storage
        self._cache = cache

    async def aggregate(
        self, granularity: Granularity, records: Sequence[RecordedObservation]
    ) -> list[Metric]:
        """Increment the *granularity* bucket of every record.

        A record the storage rejects as invalid is logged and skipped.

        Returns:
            Aggregates whose value changed, one entry per bucket.
        """
        updated: dict[str, Metric] = {}
        for record in records:
            obs = record.observation
            bucket = granularity.bucket_start(record.observed_at)
            dimensions = {**obs.dimensions, "time_period": granularity.label(bucket)}
            try:
                metric, applied = await self._storage.increment_aggregate(
                    name=f"{obs.name}.{granularity.value}",
                    source=record.source,
                    dimensions=dimensions,
                    bucket_start=bucket,
                    value=obs.value,
                    dedup_key=f"{granularity.value}:{record.dedup_key}",
                )
            except ValidationError as exc:
                aggregation_skipped_total.labels(granularity=granularity.value).inc()
                _log.warning(
                    "aggregation_record_skipped",
                    event_id=record.event_id,
                    metric_name=obs.name,
                    granularity=granularity.value,
                    error=str(exc),
                )
                continue
            if not applied:
                continue
            updated[metric.metric_id] = metric
            aggregates_updated_total.labels(granularity=granularity.value).inc()
            if self._cache is not None:
                self._cache.cache_metric(metric)
        return list(updated.values())


class AggregationJob:
    """Scheduled unit of aggregation work.

    Each run takes a fixed snapshot of the observations in the lookback
    window, aggregates it at every configured granularity and schedules
    anomaly detection for the aggregates that changed. Increment dedup keys
    for buckets that end before the window are pruned afterwards; no
    observation in a later snapshot can map to them.
    """

    def __init__(
        self,
        storage: StoragePort,
        aggregator: MetricAggregator,
        queue: QueuePort,
        granularities: Sequence[Granularity] = tuple(Granularity),
        lookback: timedelta = timedelta(days=1),
        interval_seconds: float = 300.0,
    ) -> None:
        self._storage = storage
        self._aggregator = aggregator
        self._queue = queue
        self._granularities = list(granularities)
        self._lookback = lookback
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None

    async def run_once(self, now: datetime | None = None) -> dict[str, int]:
        now = now or datetime.now(tz=UTC)
        window_start = now - self._lookback
        snapshot = await self._storage.list_observations(window_start, now)
        summary = {"observations": len(snapshot), "updated": 0, "scheduled": 0, "deferred": 0, "pruned": 0}
        for granularity in self._granularities:
            updated = await self._aggregator.aggregate(granularity, snapshot)
            summary["updated"] += len(updated)
            for metric in updated:
                try:
                    await self._queue.enqueue_anomaly_detection(metric)
                except QueueBackpressureError:
                    summary["deferred"] += 1
                    _log.warning(
                        "anomaly_detection_deferred",
                        metric_id=metric.metric_id,
                        metric_name=metric.name,
                    )
                else:
                    summary["scheduled"] += 1
        summary["pruned"] = await self._storage.prune_applied_increments(self._prune_horizon(window_start))
        _log.info("aggregation_run_completed", **summary)
        return summary

    def _prune_horizon(self, window_start: datetime) -> datetime:
        """Start of the widest bucket that still overlaps the lookback window."""
        return min(
            (g.bucket_start(window_start) for g in self._granularities),
            default=window_start,
        )

    async def run(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception as exc:
                _log.error("aggregation_run_failed", error=str(exc))
            await asyncio.sleep(self._interval)

    def start(self) -> asyncio.Task[None]:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="aggregation-job")
        return self._task

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
