"""Threshold-based anomaly detection over aggregate metrics.

A metric whose name contains one of the configured static patterns (``cpu``,
``memory``) is compared to that fixed threshold. Every other metric is
compared to ``mean + k * stddev`` of its own recent history, once enough
history exists. Only a value strictly above the threshold raises an alert.
"""

from __future__ import annotations

import math
import statistics
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

import structlog

from reflexagent.models.alerts import Alert, AlertSeverity
from reflexagent.models.config import AnomalyConfig
from reflexagent.models.metrics import Metric
from reflexagent.observability.metrics import alerts_total
from reflexagent.ports import CachePort, NotificationPort, StoragePort

_log = structlog.get_logger(component="detection")

STATISTICAL_RULE = "statistical deviation"
_THRESHOLD_SUFFIX = ":threshold"


@dataclass(frozen=True)
class Threshold:
    """The threshold that applies to one metric, and the rule it came from."""

    rule: str
    value: float


class StaticThresholdPolicy:
    """Fixed thresholds keyed by a case-insensitive substring of the metric name.

    Patterns are tried in insertion order; the first match wins.
    """

    def __init__(self, thresholds: Mapping[str, float]) -> None:
        self._thresholds = {pattern.lower(): float(value) for pattern, value in thresholds.items()}

    def match(self, metric_name: str) -> Threshold | None:
        lowered = metric_name.lower()
        for pattern, value in self._thresholds.items():
            if pattern in lowered:
                return Threshold(rule=f"{pattern} threshold", value=value)
        return None


class StatisticalPolicy:
    """``mean + stddev_multiplier * stddev`` of trailing values."""

    def __init__(self, stddev_multiplier: float = 3.0, min_samples: int = 5) -> None:
        if min_samples < 2:
            raise ValueError("min_samples must be at least 2")
        self._k = stddev_multiplier
        self._min_samples = min_samples

    def threshold(self, history: Sequence[float]) -> Threshold | None:
        if len(history) < self._min_samples:
            return None
        try:
            value = statistics.fmean(history) + self._k * statistics.pstdev(history)
        except OverflowError:
            return None
        return Threshold(rule=STATISTICAL_RULE, value=value) if math.isfinite(value) else None


def severity_for(value: float, threshold: float, critical_multiplier: float = 2.0) -> AlertSeverity | None:
    """None unless ``value > threshold``; critical at or beyond the multiplier."""
    if value <= threshold:
        return None
    if value >= threshold * critical_multiplier:
        return AlertSeverity.CRITICAL
    return AlertSeverity.WARNING


def evaluate(metric: Metric, threshold: Threshold, critical_multiplier: float = 2.0) -> Alert | None:
    """Pure evaluation of *metric* against *threshold*. Never touches the metric."""
    severity = severity_for(metric.value, threshold.value, critical_multiplier)
    if severity is None:
        return None
    return Alert(name=threshold.rule, severity=severity, metric=metric, threshold=threshold.value)


class AnomalyDetector:
    """Evaluates metrics, persists alerts and forwards them for notification.

    A failed notification is logged and does not undo the persisted alert.
    With a cache, the statistical threshold of each series bucket is cached
    under ``<metric name>:threshold`` until the entry expires, so repeated
    evaluations of a changing bucket skip the history query.
    """

    def __init__(
        self,
        storage: StoragePort,
        notifier: NotificationPort | None = None,
        config: AnomalyConfig | None = None,
        cache: CachePort | None = None,
    ) -> None:
        config = config or AnomalyConfig()
        self._storage = storage
        self._cache = cache
        self._notifier = notifier
        self._static = StaticThresholdPolicy(config.static_thresholds)
        self._statistical = StatisticalPolicy(config.stddev_multiplier, config.min_samples)
        self._critical_multiplier = config.critical_multiplier
        self._history_size = config.history_size

    async def threshold_for(self, metric: Metric) -> Threshold | None:
        static = self._static.match(metric.name)
        if static is not None:
            return static
        cache_name = f"{metric.name}{_THRESHOLD_SUFFIX}"
        if self._cache is not None:
            cached = self._cache.get_cached_metric(cache_name, metric.dimensions)
            if cached is not None:
                return Threshold(rule=STATISTICAL_RULE, value=cached)
        history = await self._storage.recent_values(
            metric.name, metric.dimensions, self._history_size, exclude_id=metric.metric_id
        )
        threshold = self._statistical.threshold(history)
        if threshold is not None and self._cache is not None:
            self._cache.cache_metric(
                Metric(
                    name=cache_name,
                    value=threshold.value,
                    source=metric.source,
                    dimensions=dict(metric.dimensions),
                    recorded_at=metric.recorded_at,
                )
            )
        return threshold

    async def detect(self, metric: Metric) -> Alert | None:
        threshold = await self.threshold_for(metric)
        if threshold is None:
            return None
        alert = evaluate(metric, threshold, self._critical_multiplier)
        if alert is None:
            return None

        alert = await self._storage.save_alert(alert)
        alerts_total.labels(severity=alert.severity.value).inc()
        _log.warning(
            "anomaly_detected",
            alert_id=alert.alert_id,
            metric_id=metric.metric_id,
            metric_name=metric.name,
            value=metric.value,
            threshold=threshold.value,
            severity=alert.severity.value,
        )
        await self._notify(alert)
        return alert

    async def _notify(self, alert: Alert) -> None:
        if self._notifier is None:
            return
        try:
            delivered = await self._notifier.send_alert(alert)
        except Exception as exc:
            _log.error("alert_notification_raised", alert_id=alert.alert_id, error=str(exc))
            return
        if not delivered:
            _log.warning("alert_notification_failed", alert_id=alert.alert_id)
