"""TTL metric cache.

Advisory only: a miss (expired or never cached) returns None and callers must
recompute. A miss is never interpreted as zero.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping

import structlog

from reflexagent.models.metrics import DimensionValue, Metric, dimension_key

_log = structlog.get_logger(component="storage.cache")


class InMemoryMetricCache:
    """CachePort implementation keyed by ``(name, dimensions)``."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = 10_000,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._ttl = ttl_seconds
        self._clock = clock
        self._max_entries = max_entries
        # (name, dimension key) -> (value, expires_at), oldest expiry first
        self._entries: dict[tuple[str, str], tuple[float, float]] = {}

    def cache_metric(self, metric: Metric) -> None:
        """Store *metric*'s value, then drop expired entries and any overflow."""
        key = (metric.name, dimension_key(dict(metric.dimensions)))
        now = self._clock()
        # Re-inserting moves the key to the end, keeping expiry order.
        self._entries.pop(key, None)
        self._entries[key] = (metric.value, now + self._ttl)
        self._evict(now)

    def _evict(self, now: float) -> None:
        evicted = 0
        while self._entries:
            oldest = next(iter(self._entries))
            _, expires_at = self._entries[oldest]
            if now < expires_at and len(self._entries) <= self._max_entries:
                break
            del self._entries[oldest]
            evicted += 1
        if evicted:
            _log.debug("metric_cache_evicted", evicted=evicted, size=len(self._entries))

    def get_cached_metric(self, name: str, dimensions: Mapping[str, DimensionValue]) -> float | None:
        key = (name, dimension_key(dict(dimensions)))
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def clear_metric_cache(self, name: str | None = None) -> int:
        """Drop every entry, or only those for metric *name*. Returns the count removed."""
        if name is None:
            removed = len(self._entries)
            self._entries.clear()
        else:
            keys = [k for k in self._entries if k[0] == name]
            for k in keys:
                del self._entries[k]
            removed = len(keys)
        _log.debug("metric_cache_cleared", metric_name=name, removed=removed)
        return removed

    def __len__(self) -> int:
        return len(self._entries)
