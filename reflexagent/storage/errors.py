"""Typed repository errors.

Callers branch on the error class, never on message text. Every error keeps
the operation that failed, the backend exception (``source_error``) and a
context mapping of the identifiers involved.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

_log = structlog.get_logger(component="storage.errors")


class RepositoryError(Exception):
    """Base class for all storage errors."""

    def __init__(
        self,
        message: str = "Repository error occurred",
        operation: str = "",
        source_error: BaseException | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.source_error = source_error
        self.context = dict(context or {})

    @property
    def root_cause(self) -> BaseException:
        """Innermost exception in the ``source_error`` / ``__cause__`` chain."""
        current: BaseException = self
        seen: set[int] = set()
        while id(current) not in seen:
            seen.add(id(current))
            nxt = getattr(current, "source_error", None) or current.__cause__
            if nxt is None:
                break
            current = nxt
        return current


class NotFoundError(RepositoryError):
    def __init__(self, entity: str, entity_id: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(
            f"{entity} not found with ID: {entity_id}",
            operation=f"find_{entity.lower()}",
            context={**(context or {}), "entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class DatabaseError(RepositoryError):
    def __init__(
        self,
        operation: str,
        source_error: BaseException | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        message = f"Database error during {operation}"
        if isinstance(source_error, sqlite3.OperationalError):
            message = f"SQL error during {operation}"
        super().__init__(message, operation, source_error, {**(context or {}), "operation": operation})


class ValidationError(RepositoryError):
    def __init__(self, message: str, operation: str = "", context: dict[str, Any] | None = None) -> None:
        super().__init__(message, operation, None, context)


class QueryError(RepositoryError):
    def __init__(
        self,
        query: str,
        source_error: BaseException | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"Error in {query} query", query, source_error, {**(context or {}), "query": query})


class UnsupportedOperationError(RepositoryError):
    def __init__(self, operation: str, backend: str) -> None:
        super().__init__(
            f"Operation {operation} is not supported by the {backend} backend",
            operation,
            context={"backend": backend},
        )


@contextmanager
def repository_operation(operation: str, **context: Any) -> Iterator[None]:
    """Wrap backend exceptions raised in the block into the typed family.

    Typed repository errors pass through unchanged. ``ValueError`` becomes a
    ValidationError, sqlite ``ProgrammingError`` a QueryError, anything else a
    DatabaseError.
    """
    try:
        yield
    except RepositoryError:
        raise
    except ValueError as exc:
        _log.warning("repository_validation_failed", operation=operation, error=str(exc), **context)
        error = ValidationError(f"Validation failed during {operation}: {exc}", operation, context)
        error.source_error = exc
        raise error from exc
    except sqlite3.ProgrammingError as exc:
        _log.error("repository_query_failed", operation=operation, error=str(exc), **context)
        raise QueryError(operation, exc, context) from exc
    except Exception as exc:
        _log.error("repository_operation_failed", operation=operation, error=str(exc), **context)
        raise DatabaseError(operation, exc, context) from exc
