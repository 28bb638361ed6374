"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class QueueConfig:
    """Per-queue capacity limits and worker batching."""

    max_depths: dict[str, int] = field(
        default_factory=lambda: {
            "raw_events": 50_000,
            "event_processing": 10_000,
            "metric_calculation": 5_000,
            "anomaly_detection": 1_000,
        }
    )
    batch_sizes: dict[str, int] = field(
        default_factory=lambda: {
            "raw_events": 100,
            "event_processing": 50,
            "metric_calculation": 25,
            "anomaly_detection": 10,
        }
    )
    poll_interval_seconds: float = 0.5
    idle_delay_seconds: float = 5.0
    max_empty_batches: int = 3


@dataclass
class RetryConfig:
    """Bounded retry policy applied by every queue worker."""

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0


@dataclass
class AggregationConfig:
    """Scheduled aggregation job settings."""

    interval_seconds: int = 300
    lookback_minutes: int = 1440
    granularities: list[str] = field(default_factory=lambda: ["5min", "hourly", "daily"])


@dataclass
class AnomalyConfig:
    """Threshold policy.

    ``static_thresholds`` maps a substring of the metric name to a fixed
    threshold; metrics matching none of them use the statistical policy.
    """

    static_thresholds: dict[str, float] = field(
        default_factory=lambda: {"cpu": 80.0, "memory": 75.0}
    )
    critical_multiplier: float = 2.0
    stddev_multiplier: float = 3.0
    min_samples: int = 5
    history_size: int = 30


@dataclass
class CacheConfig:
    ttl_seconds: int = 300
    max_entries: int = 10_000


@dataclass
class StorageConfig:
    """``backend`` is ``memory`` or ``sqlite``."""

    backend: str = "memory"
    sqlite_path: str = ":memory:"


@dataclass
class NotificationConfig:
    """Notification system configuration."""

    webhook_secret_ref: str = ""
    cooldown_minutes: int = 15
    log_channel_enabled: bool = True


@dataclass
class MonitorConfig:
    interval_seconds: int = 30
    change_tolerance: int = 10
    silent_reports: int = 10


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"
    fmt: str = "json"


@dataclass
class ReflexAgentConfig:
    """Top-level ReflexAgent configuration."""

    queue: QueueConfig = field(default_factory=QueueConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    anomaly: AnomalyConfig = field(default_factory=AnomalyConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    log: LogConfig = field(default_factory=LogConfig)
