"""Port interfaces for the collaborators the pipeline depends on.

The pipeline depends only on these protocols; concrete adapters live in
``reflexagent.storage``, ``reflexagent.queueing`` and
``reflexagent.notifications`` and are injected by the application bootstrap.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from reflexagent.models.alerts import Alert, AlertStatus
from reflexagent.models.events import Event
from reflexagent.models.metrics import DimensionValue, Metric, RecordedObservation


@runtime_checkable
class StoragePort(Protocol):
    """Persistence for events, metrics, alerts and raw observations.

    ``save_*`` assigns a stable identifier when the entity has none.
    ``find_*`` returns None for an unknown id and never raises for absence.
    """

    async def save_event(self, event: Event) -> Event: ...

    async def find_event(self, event_id: str) -> Event | None: ...

    async def save_metric(self, metric: Metric) -> Metric: ...

    async def find_metric(self, metric_id: str) -> Metric | None: ...

    async def save_alert(self, alert: Alert) -> Alert: ...

    async def find_alert(self, alert_id: str) -> Alert | None: ...

    async def list_alerts(self, status: AlertStatus | None = None) -> list[Alert]: ...

    async def save_observations(self, records: Sequence[RecordedObservation]) -> int:
        """Store observations; records already stored (same dedup key) are skipped.

        Returns:
            Number of newly stored records.
        """
        ...

    async def list_observations(self, start: datetime, end: datetime) -> list[RecordedObservation]:
        """Observations with ``start <= observed_at <= end``, oldest first."""
        ...

    async def increment_aggregate(
        self,
        name: str,
        source: str,
        dimensions: Mapping[str, DimensionValue],
        bucket_start: datetime,
        value: float,
        dedup_key: str,
    ) -> tuple[Metric, bool]:
        """Atomically add *value* to the aggregate bucket unless *dedup_key* was applied.

        Returns:
            The current aggregate and whether this call changed it.
        """
        ...

    async def prune_applied_increments(self, before: datetime) -> int:
        """Forget increment dedup keys of buckets starting before *before*.

        Returns:
            Number of keys removed.
        """
        ...

    async def find_aggregate(self, name: str, dimensions: Mapping[str, DimensionValue]) -> Metric | None: ...

    async def recent_values(
        self, name: str, dimensions: Mapping[str, DimensionValue], limit: int, exclude_id: str = ""
    ) -> list[float]:
        """Values of the most recent aggregates with this name and dimensions
        (ignoring ``time_period``), newest first."""
        ...


@runtime_checkable
class CachePort(Protocol):
    """Advisory metric cache. A miss means "recompute", never zero."""

    def cache_metric(self, metric: Metric) -> None: ...

    def get_cached_metric(self, name: str, dimensions: Mapping[str, DimensionValue]) -> float | None: ...

    def clear_metric_cache(self, name: str | None = None) -> int: ...


@runtime_checkable
class QueuePort(Protocol):
    """Queue admission. Every enqueue fails fast under backpressure."""

    async def enqueue_raw_event(
        self, payload: Any, source: str, event_type: str | None = None
    ) -> str: ...

    async def enqueue_metric_calculation(self, event: Event) -> str: ...

    async def enqueue_anomaly_detection(self, metric: Metric) -> str: ...

    async def queue_depths(self) -> dict[str, int]: ...

    async def is_backpressured(self) -> bool: ...


@runtime_checkable
class NotificationPort(Protocol):
    """Outbound alert delivery. Returns False on failure rather than raising."""

    async def send_alert(self, alert: Alert) -> bool: ...

    async def send_message(self, channel: str, text: str) -> bool: ...
