"""Configuration loading from environment variables."""

from __future__ import annotations

import os

from reflexagent.models.config import (
    AggregationConfig,
    AnomalyConfig,
    CacheConfig,
    LogConfig,
    MonitorConfig,
    NotificationConfig,
    QueueConfig,
    ReflexAgentConfig,
    RetryConfig,
    StorageConfig,
)
from reflexagent.models.metrics import Granularity

_QUEUE_NAMES = ("raw_events", "event_processing", "metric_calculation", "anomaly_detection")


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"REFLEXAGENT_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float | None = None) -> float:
    val = float(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    return val


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_choice(name: str, value: str, valid: set[str]) -> str:
    if value.lower() not in valid:
        raise ValueError(f"Invalid {name}: {value}. Must be one of {valid}")
    return value.lower()


def _parse_granularities(value: str) -> list[str]:
    names = [part.strip() for part in value.split(",") if part.strip()]
    if not names:
        raise ValueError("At least one aggregation granularity is required")
    for name in names:
        try:
            Granularity(name)
        except ValueError:
            raise ValueError(f"Invalid aggregation granularity: {name}") from None
    return names


def _parse_thresholds(value: str) -> dict[str, float]:
    """Parse ``pattern=threshold`` pairs, e.g. ``cpu=80,memory=75``."""
    thresholds: dict[str, float] = {}
    for pair in value.split(","):
        if not pair.strip():
            continue
        pattern, sep, raw = pair.partition("=")
        if not sep or not pattern.strip():
            raise ValueError(f"Invalid threshold entry: {pair!r}")
        try:
            thresholds[pattern.strip().lower()] = float(raw)
        except ValueError:
            raise ValueError(f"Invalid threshold value in {pair!r}") from None
    return thresholds


def _queue_limits(prefix: str, defaults: dict[str, int]) -> dict[str, int]:
    return {
        name: _env_int(f"{prefix}_{name.upper()}", defaults[name], min_val=1)
        for name in _QUEUE_NAMES
    }


def load_config() -> ReflexAgentConfig:
    """Load configuration from REFLEXAGENT_* environment variables."""
    queue_defaults = QueueConfig()
    anomaly_defaults = AnomalyConfig()
    threshold_default = ",".join(f"{k}={v}" for k, v in anomaly_defaults.static_thresholds.items())

    return ReflexAgentConfig(
        queue=QueueConfig(
            max_depths=_queue_limits("QUEUE_MAX", queue_defaults.max_depths),
            batch_sizes=_queue_limits("QUEUE_BATCH", queue_defaults.batch_sizes),
            poll_interval_seconds=_env_float("QUEUE_POLL_INTERVAL", 0.5, min_val=0.01),
            idle_delay_seconds=_env_float("QUEUE_IDLE_DELAY", 5.0, min_val=0.1),
            max_empty_batches=_env_int("QUEUE_MAX_EMPTY_BATCHES", 3, min_val=1, max_val=100),
        ),
        retry=RetryConfig(
            max_retries=_env_int("RETRY_MAX", 3, min_val=0, max_val=10),
            base_delay_seconds=_env_float("RETRY_BASE_DELAY", 1.0, min_val=0.0),
            max_delay_seconds=_env_float("RETRY_MAX_DELAY", 60.0, min_val=0.0),
        ),
        aggregation=AggregationConfig(
            interval_seconds=_env_int("AGGREGATION_INTERVAL", 300, min_val=10, max_val=86400),
            lookback_minutes=_env_int("AGGREGATION_LOOKBACK_MINUTES", 1440, min_val=5),
            granularities=_parse_granularities(_env("AGGREGATION_GRANULARITIES", "5min,hourly,daily")),
        ),
        anomaly=AnomalyConfig(
            static_thresholds=_parse_thresholds(_env("ANOMALY_THRESHOLDS", threshold_default)),
            critical_multiplier=_env_float("ANOMALY_CRITICAL_MULTIPLIER", 2.0, min_val=1.0),
            stddev_multiplier=_env_float("ANOMALY_STDDEV_MULTIPLIER", 3.0, min_val=0.0),
            min_samples=_env_int("ANOMALY_MIN_SAMPLES", 5, min_val=2, max_val=1000),
            history_size=_env_int("ANOMALY_HISTORY_SIZE", 30, min_val=2, max_val=1000),
        ),
        cache=CacheConfig(
            ttl_seconds=_env_int("CACHE_TTL", 300, min_val=1),
            max_entries=_env_int("CACHE_MAX_ENTRIES", 10_000, min_val=1),
        ),
        storage=StorageConfig(
            backend=_validate_choice("storage backend", _env("STORAGE_BACKEND", "memory"), {"memory", "sqlite"}),
            sqlite_path=_env("STORAGE_SQLITE_PATH", ":memory:"),
        ),
        notifications=NotificationConfig(
            webhook_secret_ref=_env("NOTIFICATIONS_WEBHOOK_SECRET_REF", ""),
            cooldown_minutes=_env_int("NOTIFICATIONS_COOLDOWN_MINUTES", 15, min_val=0, max_val=1440),
            log_channel_enabled=_env_bool("NOTIFICATIONS_LOG_CHANNEL", True),
        ),
        monitor=MonitorConfig(
            interval_seconds=_env_int("MONITOR_INTERVAL", 30, min_val=1, max_val=3600),
            change_tolerance=_env_int("MONITOR_CHANGE_TOLERANCE", 10, min_val=0),
            silent_reports=_env_int("MONITOR_SILENT_REPORTS", 10, min_val=1),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
            fmt=_validate_choice("log format", _env("LOG_FORMAT", "json"), {"json", "console"}),
        ),
    )
