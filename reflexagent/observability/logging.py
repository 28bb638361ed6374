"""Structured logging configuration using structlog.

Workers bind per-item context (queue, item id, attempt) through
``structlog.contextvars`` so every line logged while handling a work item
carries it without threading a logger through the pipeline.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

_RENDERERS = {
    "json": structlog.processors.JSONRenderer,
    "console": structlog.dev.ConsoleRenderer,
}


def setup_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog to emit one line per event on stderr.

    Args:
        level: Minimum level name (debug, info, warning, error).
        fmt:   ``json`` for machine-readable lines, ``console`` for local runs.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    renderer = _RENDERERS.get(fmt, structlog.processors.JSONRenderer)()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Get a logger bound with a component name."""
    return structlog.get_logger(component=component)  # type: ignore[return-value]


@contextmanager
def bound_context(**values: object) -> Iterator[None]:
    """Bind *values* to the logging context for the duration of the block."""
    tokens = structlog.contextvars.bind_contextvars(**values)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
