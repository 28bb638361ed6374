"""Metric observation, aggregate and time-bucket data structures."""

from __future__ import annotations

import hashlib
import json
import math
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from uuid import uuid4

DimensionValue = str | bool | int | float


def _require_finite(kind: str, value: object) -> None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValueError(f"{kind} value must be numeric, got {value!r}")
    try:
        finite = math.isfinite(value)
    except OverflowError:
        finite = False
    if not finite:
        raise ValueError(f"{kind} value must be finite, got {value!r}")


@dataclass(frozen=True)
class MetricObservation:
    """A single, not-yet-aggregated data point produced by classification."""

    name: str
    value: float
    dimensions: dict[str, str] = field(default_factory=dict)
    timestamp: datetime | None = None

    def __post_init__(self) -> None:
        _require_finite("Observation", self.value)


@dataclass(frozen=True)
class Classification:
    """Result of classifying one event."""

    metrics: list[MetricObservation] = field(default_factory=list)

    def named(self, name: str) -> list[MetricObservation]:
        return [m for m in self.metrics if m.name == name]

    @property
    def names(self) -> set[str]:
        return {m.name for m in self.metrics}


@dataclass(frozen=True)
class Metric:
    """Persisted aggregate metric.

    ``value`` must be finite and ``dimensions`` values scalar. A new bucket
    value replaces the prior one for the same key; instances themselves are
    never mutated.
    """

    name: str
    value: float
    source: str
    dimensions: dict[str, DimensionValue] = field(default_factory=dict)
    recorded_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    metric_id: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Metric name must not be empty")
        _require_finite("Metric", self.value)
        for key, val in self.dimensions.items():
            if not isinstance(val, str | bool | int | float):
                raise ValueError(f"Dimension {key!r} must be scalar, got {type(val).__name__}")

    def with_id(self, metric_id: str | None = None) -> Metric:
        return replace(self, metric_id=metric_id or self.metric_id or str(uuid4()))

    def with_value(self, value: float) -> Metric:
        return replace(self, value=value)


class Granularity(StrEnum):
    """Aggregation bucket widths."""

    FIVE_MINUTE = "5min"
    HOURLY = "hourly"
    DAILY = "daily"

    @property
    def width(self) -> timedelta:
        return _WIDTHS[self]

    def bucket_start(self, ts: datetime) -> datetime:
        """Floor *ts* (interpreted as UTC when naive) to the bucket boundary."""
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=UTC)
        ts = ts.astimezone(UTC)
        if self is Granularity.DAILY:
            return ts.replace(hour=0, minute=0, second=0, microsecond=0)
        if self is Granularity.HOURLY:
            return ts.replace(minute=0, second=0, microsecond=0)
        return ts.replace(minute=ts.minute - ts.minute % 5, second=0, microsecond=0)

    def label(self, bucket_start: datetime) -> str:
        """Human-readable bucket label stored in the ``time_period`` dimension."""
        if self is Granularity.DAILY:
            return bucket_start.strftime("%Y-%m-%d")
        return bucket_start.strftime("%Y-%m-%dT%H:%M")


_WIDTHS = {
    Granularity.FIVE_MINUTE: timedelta(minutes=5),
    Granularity.HOURLY: timedelta(hours=1),
    Granularity.DAILY: timedelta(days=1),
}


def dimension_key(dimensions: dict[str, DimensionValue]) -> str:
    """Canonical, order-independent string form of a dimension mapping."""
    return json.dumps(dimensions, sort_keys=True, separators=(",", ":"), default=str)


@dataclass(frozen=True)
class RecordedObservation:
    """An observation stored alongside the event it came from.

    The stored form is what the aggregation job snapshots; ``dedup_key``
    identifies it across at-least-once redelivery.
    """

    event_id: str
    source: str
    observed_at: datetime
    observation: MetricObservation

    @property
    def dedup_key(self) -> str:
        raw = "|".join(
            (self.event_id, self.observation.name, dimension_key(dict(self.observation.dimensions)))
        )
        return hashlib.sha256(raw.encode()).hexdigest()
