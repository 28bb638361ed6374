"""Storage and cache adapters.

Exports:
    InMemoryStorage     -- Dictionary-backed StoragePort.
    SQLiteStorage       -- aiosqlite-backed StoragePort with atomic upserts.
    InMemoryMetricCache -- TTL CachePort.
    build_storage       -- Factory used by the application bootstrap.
    require             -- Turn a ``find_*`` miss into NotFoundError.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

from reflexagent.storage.cache import InMemoryMetricCache
from reflexagent.storage.errors import (
    DatabaseError,
    NotFoundError,
    QueryError,
    RepositoryError,
    UnsupportedOperationError,
    ValidationError,
    repository_operation,
)
from reflexagent.storage.memory import InMemoryStorage
from reflexagent.storage.sqlite import SQLiteStorage

if TYPE_CHECKING:
    from reflexagent.models.config import StorageConfig

T = TypeVar("T")

__all__ = [
    "DatabaseError",
    "InMemoryMetricCache",
    "InMemoryStorage",
    "NotFoundError",
    "QueryError",
    "RepositoryError",
    "SQLiteStorage",
    "UnsupportedOperationError",
    "ValidationError",
    "build_storage",
    "repository_operation",
    "require",
]


def build_storage(config: StorageConfig) -> InMemoryStorage | SQLiteStorage:
    if config.backend == "memory":
        return InMemoryStorage()
    if config.backend == "sqlite":
        return SQLiteStorage(config.sqlite_path)
    raise UnsupportedOperationError("build_storage", config.backend)


async def require(entity: str, entity_id: str, lookup: Callable[[str], Awaitable[T | None]]) -> T:
    """Await ``lookup(entity_id)`` and raise NotFoundError when it returns None."""
    found = await lookup(entity_id)
    if found is None:
        raise NotFoundError(entity, entity_id)
    return found
