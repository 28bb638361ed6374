"""Core data structures for ReflexAgent."""

from reflexagent.models.alerts import Alert, AlertSeverity, AlertStatus
from reflexagent.models.config import ReflexAgentConfig
from reflexagent.models.events import Event, EventSource
from reflexagent.models.metrics import (
    Classification,
    Granularity,
    Metric,
    MetricObservation,
    RecordedObservation,
)
from reflexagent.models.queue import WorkItem, WorkStatus

__all__ = [
    "Alert",
    "AlertSeverity",
    "AlertStatus",
    "Classification",
    "Event",
    "EventSource",
    "Granularity",
    "Metric",
    "MetricObservation",
    "RecordedObservation",
    "ReflexAgentConfig",
    "WorkItem",
    "WorkStatus",
]
