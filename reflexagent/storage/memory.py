"""In-process storage adapter.

All mutation happens under one asyncio.Lock, which makes
``increment_aggregate`` atomic with respect to concurrent workers in the
same event loop. Suitable for tests and single-process deployments.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import replace
from datetime import UTC, datetime
from uuid import uuid4

from reflexagent.models.alerts import Alert, AlertStatus
from reflexagent.models.events import Event
from reflexagent.models.metrics import DimensionValue, Metric, RecordedObservation, dimension_key
from reflexagent.storage.errors import repository_operation

SERIES_EXCLUDED_DIMENSIONS = frozenset({"time_period"})


def _utc(ts: datetime) -> datetime:
    return ts.replace(tzinfo=UTC) if ts.tzinfo is None else ts


def series_key(dimensions: Mapping[str, DimensionValue]) -> str:
    """Dimension key ignoring the bucket label, i.e. one key per time series."""
    return dimension_key({k: v for k, v in dimensions.items() if k not in SERIES_EXCLUDED_DIMENSIONS})


class InMemoryStorage:
    """StoragePort implementation backed by dictionaries."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._events: dict[str, Event] = {}
        self._metrics: dict[str, Metric] = {}
        self._alerts: dict[str, Alert] = {}
        self._observations: dict[str, RecordedObservation] = {}
        self._aggregates: dict[tuple[str, str], str] = {}
        # increment dedup key -> bucket start
        self._applied: dict[str, datetime] = {}

    # -- events ------------------------------------------------------------

    async def save_event(self, event: Event) -> Event:
        with repository_operation("save_event", event_id=event.event_id):
            async with self._lock:
                self._events[event.event_id] = event
        return event

    async def find_event(self, event_id: str) -> Event | None:
        return self._events.get(event_id)

    # -- metrics -----------------------------------------------------------

    async def save_metric(self, metric: Metric) -> Metric:
        with repository_operation("save_metric", metric_name=metric.name):
            saved = metric.with_id()
            async with self._lock:
                self._metrics[saved.metric_id] = saved
        return saved

    async def find_metric(self, metric_id: str) -> Metric | None:
        return self._metrics.get(metric_id)

    # -- alerts ------------------------------------------------------------

    async def save_alert(self, alert: Alert) -> Alert:
        with repository_operation("save_alert", alert_name=alert.name):
            saved = alert if alert.alert_id else replace(alert, alert_id=str(uuid4()))
            async with self._lock:
                self._alerts[saved.alert_id] = saved
        return saved

    async def find_alert(self, alert_id: str) -> Alert | None:
        return self._alerts.get(alert_id)

    async def list_alerts(self, status: AlertStatus | None = None) -> list[Alert]:
        alerts = sorted(self._alerts.values(), key=lambda a: a.timestamp)
        if status is None:
            return alerts
        return [a for a in alerts if a.status == status]

    # -- observations ------------------------------------------------------

    async def save_observations(self, records: Sequence[RecordedObservation]) -> int:
        stored = 0
        async with self._lock:
            for record in records:
                key = record.dedup_key
                if key in self._observations:
                    continue
                self._observations[key] = record
                stored += 1
        return stored

    async def list_observations(self, start: datetime, end: datetime) -> list[RecordedObservation]:
        async with self._lock:
            snapshot = list(self._observations.values())
        return sorted(
            (r for r in snapshot if start <= r.observed_at <= end),
            key=lambda r: r.observed_at,
        )

    # -- aggregates --------------------------------------------------------

    async def increment_aggregate(
        self,
        name: str,
        source: str,
        dimensions: Mapping[str, DimensionValue],
        bucket_start: datetime,
        value: float,
        dedup_key: str,
    ) -> tuple[Metric, bool]:
        key = (name, dimension_key(dict(dimensions)))
        with repository_operation("increment_aggregate", metric_name=name):
            async with self._lock:
                metric_id = self._aggregates.get(key)
                current = self._metrics.get(metric_id) if metric_id else None
                if dedup_key in self._applied and current is not None:
                    return current, False
                if current is None:
                    updated = Metric(
                        name=name,
                        value=value,
                        source=source,
                        dimensions=dict(dimensions),
                        recorded_at=bucket_start,
                        metric_id=str(uuid4()),
                    )
                else:
                    updated = current.with_value(current.value + value)
                self._metrics[updated.metric_id] = updated
                self._aggregates[key] = updated.metric_id
                self._applied[dedup_key] = _utc(bucket_start)
        return updated, True

    async def prune_applied_increments(self, before: datetime) -> int:
        cutoff = _utc(before)
        async with self._lock:
            stale = [key for key, bucket in self._applied.items() if bucket < cutoff]
            for key in stale:
                del self._applied[key]
        return len(stale)

    async def find_aggregate(self, name: str, dimensions: Mapping[str, DimensionValue]) -> Metric | None:
        metric_id = self._aggregates.get((name, dimension_key(dict(dimensions))))
        return self._metrics.get(metric_id) if metric_id else None

    async def recent_values(
        self, name: str, dimensions: Mapping[str, DimensionValue], limit: int, exclude_id: str = ""
    ) -> list[float]:
        wanted = series_key(dimensions)
        async with self._lock:
            series = [
                self._metrics[metric_id]
                for (agg_name, _), metric_id in self._aggregates.items()
                if agg_name == name and metric_id != exclude_id
            ]
        matching = [m for m in series if series_key(m.dimensions) == wanted]
        matching.sort(key=lambda m: m.recorded_at, reverse=True)
        return [m.value for m in matching[:limit]]
