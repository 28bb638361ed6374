"""SQLite storage adapter using aiosqlite.

Aggregate increments run inside a single ``BEGIN IMMEDIATE`` transaction:
the dedup key is claimed with ``INSERT OR IGNORE`` and the bucket value is
bumped with ``INSERT ... ON CONFLICT DO UPDATE``. Either both happen or
neither does, and a redelivered observation never double-counts.

For ``:memory:`` databases a persistent connection is kept, since SQLite
in-memory databases are connection-scoped.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import aiosqlite

from reflexagent.models.alerts import Alert, AlertSeverity, AlertStatus
from reflexagent.models.events import Event
from reflexagent.models.metrics import (
    DimensionValue,
    Metric,
    MetricObservation,
    RecordedObservation,
    dimension_key,
)
from reflexagent.storage.errors import repository_operation
from reflexagent.storage.memory import series_key

_SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    source TEXT NOT NULL,
    timestamp REAL NOT NULL,
    data TEXT NOT NULL DEFAULT '{}'
);
CREATE TABLE IF NOT EXISTS metrics (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    value REAL NOT NULL,
    source TEXT NOT NULL,
    dimensions TEXT NOT NULL DEFAULT '{}',
    series_key TEXT NOT NULL DEFAULT '{}',
    aggregate_key TEXT,
    recorded_at REAL NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_metrics_aggregate ON metrics(name, aggregate_key);
CREATE INDEX IF NOT EXISTS idx_metrics_series ON metrics(name, series_key, recorded_at);
CREATE TABLE IF NOT EXISTS applied_increments (
    dedup_key TEXT PRIMARY KEY,
    bucket_start REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_applied_increments_bucket ON applied_increments(bucket_start);
CREATE TABLE IF NOT EXISTS alerts (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    severity TEXT NOT NULL,
    metric TEXT NOT NULL,
    threshold REAL NOT NULL,
    timestamp REAL NOT NULL,
    status TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS observations (
    dedup_key TEXT PRIMARY KEY,
    event_id TEXT NOT NULL,
    source TEXT NOT NULL,
    observed_at REAL NOT NULL,
    name TEXT NOT NULL,
    value REAL NOT NULL,
    dimensions TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_observations_observed_at ON observations(observed_at);
"""

_METRIC_COLUMNS = "id, name, value, source, dimensions, recorded_at"

_UPSERT_AGGREGATE = """
INSERT INTO metrics (id, name, value, source, dimensions, series_key, aggregate_key, recorded_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(name, aggregate_key) DO UPDATE SET value = metrics.value + excluded.value
"""


def _ts(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.timestamp()


def _dt(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=UTC)


def _metric_from_row(row: Sequence[Any]) -> Metric:
    return Metric(
        metric_id=row[0],
        name=row[1],
        value=row[2],
        source=row[3],
        dimensions=json.loads(row[4]),
        recorded_at=_dt(row[5]),
    )


def _metric_to_json(metric: Metric) -> str:
    return json.dumps(
        {
            "id": metric.metric_id,
            "name": metric.name,
            "value": metric.value,
            "source": metric.source,
            "dimensions": metric.dimensions,
            "recorded_at": _ts(metric.recorded_at),
        }
    )


def _metric_from_json(raw: str) -> Metric:
    data = json.loads(raw)
    return Metric(
        metric_id=data["id"],
        name=data["name"],
        value=data["value"],
        source=data["source"],
        dimensions=data["dimensions"],
        recorded_at=_dt(data["recorded_at"]),
    )


class SQLiteStorage:
    """StoragePort implementation persisting to a SQLite file."""

    def __init__(self, db_path: str = ":memory:") -> None:
        self._db_path = db_path
        self._initialized = False
        self._init_lock: asyncio.Lock | None = None
        self._write_lock: asyncio.Lock | None = None
        self._persistent_conn: aiosqlite.Connection | None = None

    def _get_lock(self) -> asyncio.Lock:
        """Get or create the initialization lock (lazy to avoid event loop issues)."""
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        return self._init_lock

    def _get_write_lock(self) -> asyncio.Lock:
        if self._write_lock is None:
            self._write_lock = asyncio.Lock()
        return self._write_lock

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        async with self._get_lock():
            if self._initialized:
                return
            if self._db_path == ":memory:":
                self._persistent_conn = await aiosqlite.connect(":memory:")
                await self._persistent_conn.executescript(_SCHEMA)
            else:
                async with aiosqlite.connect(self._db_path) as db:
                    await db.execute("PRAGMA journal_mode=WAL")
                    await db.executescript(_SCHEMA)
            self._initialized = True

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[aiosqlite.Connection]:
        await self._ensure_initialized()
        if self._db_path == ":memory:":
            if self._persistent_conn is None:
                raise RuntimeError("Memory database connection not initialized")
            yield self._persistent_conn
            return
        db = await aiosqlite.connect(self._db_path, timeout=30)
        try:
            yield db
        finally:
            await db.close()

    async def _write(self, operation: str, query: str, params: Sequence[Any], **context: Any) -> None:
        with repository_operation(operation, **context):
            async with self._get_write_lock(), self._connection() as db:
                await db.execute(query, params)
                await db.commit()

    async def _fetchone(self, operation: str, query: str, params: Sequence[Any]) -> Any:
        with repository_operation(operation):
            async with self._connection() as db:
                cursor = await db.execute(query, params)
                return await cursor.fetchone()

    async def _fetchall(self, operation: str, query: str, params: Sequence[Any]) -> list[Any]:
        with repository_operation(operation):
            async with self._connection() as db:
                cursor = await db.execute(query, params)
                return list(await cursor.fetchall())

    async def close(self) -> None:
        if self._persistent_conn is not None:
            await self._persistent_conn.close()
            self._persistent_conn = None
            self._initialized = False

    async def stop(self) -> None:
        await self.close()

    # -- events ------------------------------------------------------------

    async def save_event(self, event: Event) -> Event:
        await self._write(
            "save_event",
            "INSERT OR REPLACE INTO events (id, name, source, timestamp, data) VALUES (?, ?, ?, ?, ?)",
            (event.event_id, event.name, event.source, _ts(event.timestamp), json.dumps(event.data, default=str)),
            event_id=event.event_id,
        )
        return event

    async def find_event(self, event_id: str) -> Event | None:
        row = await self._fetchone(
            "find_event", "SELECT id, name, source, timestamp, data FROM events WHERE id = ?", (event_id,)
        )
        if row is None:
            return None
        return Event(name=row[1], source=row[2], timestamp=_dt(row[3]), data=json.loads(row[4]), event_id=row[0])

    # -- metrics -----------------------------------------------------------

    async def save_metric(self, metric: Metric) -> Metric:
        saved = metric.with_id()
        await self._write(
            "save_metric",
            "INSERT OR REPLACE INTO metrics (id, name, value, source, dimensions, series_key, recorded_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                saved.metric_id,
                saved.name,
                saved.value,
                saved.source,
                json.dumps(saved.dimensions),
                series_key(saved.dimensions),
                _ts(saved.recorded_at),
            ),
            metric_name=saved.name,
        )
        return saved

    async def find_metric(self, metric_id: str) -> Metric | None:
        row = await self._fetchone("find_metric", f"SELECT {_METRIC_COLUMNS} FROM metrics WHERE id = ?", (metric_id,))
        return _metric_from_row(row) if row else None

    # -- alerts ------------------------------------------------------------

    async def save_alert(self, alert: Alert) -> Alert:
        await self._write(
            "save_alert",
            "INSERT OR REPLACE INTO alerts (id, name, severity, metric, threshold, timestamp, status) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                alert.alert_id,
                alert.name,
                alert.severity.value,
                _metric_to_json(alert.metric),
                alert.threshold,
                _ts(alert.timestamp),
                alert.status.value,
            ),
            alert_id=alert.alert_id,
        )
        return alert

    def _alert_from_row(self, row: Sequence[Any]) -> Alert:
        return Alert(
            alert_id=row[0],
            name=row[1],
            severity=AlertSeverity(row[2]),
            metric=_metric_from_json(row[3]),
            threshold=row[4],
            timestamp=_dt(row[5]),
            status=AlertStatus(row[6]),
        )

    async def find_alert(self, alert_id: str) -> Alert | None:
        row = await self._fetchone(
            "find_alert",
            "SELECT id, name, severity, metric, threshold, timestamp, status FROM alerts WHERE id = ?",
            (alert_id,),
        )
        return self._alert_from_row(row) if row else None

    async def list_alerts(self, status: AlertStatus | None = None) -> list[Alert]:
        query = "SELECT id, name, severity, metric, threshold, timestamp, status FROM alerts"
        params: tuple[Any, ...] = ()
        if status is not None:
            query += " WHERE status = ?"
            params = (status.value,)
        rows = await self._fetchall("list_alerts", query + " ORDER BY timestamp ASC", params)
        return [self._alert_from_row(row) for row in rows]

    # -- observations ------------------------------------------------------

    async def save_observations(self, records: Sequence[RecordedObservation]) -> int:
        rows = [
            (
                r.dedup_key,
                r.event_id,
                r.source,
                _ts(r.observed_at),
                r.observation.name,
                r.observation.value,
                json.dumps(r.observation.dimensions),
            )
            for r in records
        ]
        with repository_operation("save_observations", count=len(rows)):
            async with self._get_write_lock(), self._connection() as db:
                before = db.total_changes
                await db.executemany(
                    "INSERT OR IGNORE INTO observations "
                    "(dedup_key, event_id, source, observed_at, name, value, dimensions) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    rows,
                )
                await db.commit()
                return db.total_changes - before

    async def list_observations(self, start: datetime, end: datetime) -> list[RecordedObservation]:
        rows = await self._fetchall(
            "list_observations",
            "SELECT event_id, source, observed_at, name, value, dimensions FROM observations "
            "WHERE observed_at >= ? AND observed_at <= ? ORDER BY observed_at ASC",
            (_ts(start), _ts(end)),
        )
        return [
            RecordedObservation(
                event_id=row[0],
                source=row[1],
                observed_at=_dt(row[2]),
                observation=MetricObservation(name=row[3], value=row[4], dimensions=json.loads(row[5])),
            )
            for row in rows
        ]

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
        dims = dict(dimensions)
        aggregate_key = dimension_key(dims)
        with repository_operation("increment_aggregate", metric_name=name):
            async with self._get_write_lock(), self._connection() as db:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    cursor = await db.execute(
                        "INSERT OR IGNORE INTO applied_increments (dedup_key, bucket_start) VALUES (?, ?)",
                        (dedup_key, _ts(bucket_start)),
                    )
                    applied = cursor.rowcount == 1
                    if applied:
                        await db.execute(
                            _UPSERT_AGGREGATE,
                            (
                                str(uuid4()),
                                name,
                                value,
                                source,
                                json.dumps(dims),
                                series_key(dims),
                                aggregate_key,
                                _ts(bucket_start),
                            ),
                        )
                    cursor = await db.execute(
                        f"SELECT {_METRIC_COLUMNS} FROM metrics WHERE name = ? AND aggregate_key = ?",
                        (name, aggregate_key),
                    )
                    row = await cursor.fetchone()
                    if row is None:
                        raise ValueError(f"aggregate {name} missing after increment")
                    # Validates the summed value before it is committed.
                    metric = _metric_from_row(row)
                    await db.commit()
                except BaseException:
                    await db.rollback()
                    raise
        return metric, applied

    async def prune_applied_increments(self, before: datetime) -> int:
        with repository_operation("prune_applied_increments"):
            async with self._get_write_lock(), self._connection() as db:
                cursor = await db.execute("DELETE FROM applied_increments WHERE bucket_start < ?", (_ts(before),))
                await db.commit()
                return cursor.rowcount

    async def find_aggregate(self, name: str, dimensions: Mapping[str, DimensionValue]) -> Metric | None:
        row = await self._fetchone(
            "find_aggregate",
            f"SELECT {_METRIC_COLUMNS} FROM metrics WHERE name = ? AND aggregate_key = ?",
            (name, dimension_key(dict(dimensions))),
        )
        return _metric_from_row(row) if row else None

    async def recent_values(
        self, name: str, dimensions: Mapping[str, DimensionValue], limit: int, exclude_id: str = ""
    ) -> list[float]:
        rows = await self._fetchall(
            "recent_values",
            "SELECT value FROM metrics WHERE name = ? AND series_key = ? AND aggregate_key IS NOT NULL "
            "AND id != ? ORDER BY recorded_at DESC LIMIT ?",
            (name, series_key(dimensions), exclude_id, limit),
        )
        return [row[0] for row in rows]
