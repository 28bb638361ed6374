"""Shared fixtures for ReflexAgent tests.

Provides in-process storage and queue components plus payload factories so
unit and integration tests can drive the pipeline without external services.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from reflexagent.models.events import Event
from reflexagent.models.metrics import Metric
from reflexagent.queueing import InMemoryQueueBackend, QueueAdmissionController, QueueName
from reflexagent.storage import InMemoryStorage

# ---------------------------------------------------------------------------
# Payload factories
# ---------------------------------------------------------------------------

NOW = datetime(2026, 3, 1, 10, 7, 30, tzinfo=UTC)


def _github_push_payload(
    repository: str = "octocat/hello-world",
    ref: str = "refs/heads/main",
    commits: list[dict[str, Any]] | None = None,
    sender: str = "octocat",
) -> dict[str, Any]:
    """A GitHub push webhook body with sensible defaults."""
    return {
        "ref": ref,
        "repository": {"full_name": repository, "name": repository.split("/")[-1]},
        "sender": {"login": sender},
        "pusher": {"name": sender},
        "commits": commits
        if commits is not None
        else [
            {
                "id": "c0ffee",
                "message": "feat(models): add user model",
                "timestamp": "2026-03-01T10:05:00Z",
                "added": ["app/models/x.rb"],
                "modified": ["README.md"],
                "removed": [],
            }
        ],
    }


def _make_event(name: str = "github.push", source: str = "github", **overrides: Any) -> Event:
    data = overrides.pop("data", None)
    return Event(
        name=name,
        source=source,
        timestamp=overrides.pop("timestamp", NOW),
        data=data if data is not None else _github_push_payload(),
        **overrides,
    )


def _make_metric(name: str = "cpu_usage", value: float = 50.0, **overrides: Any) -> Metric:
    return Metric(
        name=name,
        value=value,
        source=overrides.pop("source", "ci"),
        dimensions=overrides.pop("dimensions", {"host": "web-1"}),
        recorded_at=overrides.pop("recorded_at", NOW),
        **overrides,
    )


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------

DEFAULT_LIMITS = {
    QueueName.RAW_EVENTS.value: 100,
    QueueName.EVENT_PROCESSING.value: 100,
    QueueName.METRIC_CALCULATION.value: 100,
    QueueName.ANOMALY_DETECTION.value: 100,
}


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def backend() -> InMemoryQueueBackend:
    return InMemoryQueueBackend(queues=[q.value for q in QueueName])


@pytest.fixture
def queue(backend: InMemoryQueueBackend) -> QueueAdmissionController:
    return QueueAdmissionController(backend, DEFAULT_LIMITS)


@pytest.fixture
def github_push_payload():
    return _github_push_payload


@pytest.fixture
def make_event():
    return _make_event


@pytest.fixture
def make_metric():
    return _make_metric
