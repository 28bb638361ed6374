"""Alert data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from uuid import uuid4

from reflexagent.models.metrics import Metric


class AlertSeverity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertStatus(StrEnum):
    """Alert lifecycle. Transitions past ACTIVE are operator actions."""

    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class Alert:
    """Raised by the anomaly detector, consumed by the notification system."""

    name: str
    severity: AlertSeverity
    metric: Metric
    threshold: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    status: AlertStatus = AlertStatus.ACTIVE
    alert_id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def message(self) -> str:
        return f"{self.name} - {self.metric.name} exceeded threshold of {self.threshold}"

    @property
    def details(self) -> dict[str, object]:
        return {
            "metric_id": self.metric.metric_id,
            "metric_name": self.metric.name,
            "value": self.metric.value,
            "threshold": self.threshold,
            "dimensions": dict(self.metric.dimensions),
            "recorded_at": self.metric.recorded_at.isoformat(),
        }
