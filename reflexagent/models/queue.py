"""Work item envelope and its processing state machine."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4


class WorkStatus(StrEnum):
    RECEIVED = "received"
    QUEUED = "queued"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"
    DEAD = "dead"


_TRANSITIONS: dict[WorkStatus, frozenset[WorkStatus]] = {
    WorkStatus.RECEIVED: frozenset({WorkStatus.QUEUED}),
    WorkStatus.QUEUED: frozenset({WorkStatus.PROCESSING}),
    WorkStatus.PROCESSING: frozenset({WorkStatus.PROCESSED, WorkStatus.FAILED}),
    WorkStatus.FAILED: frozenset({WorkStatus.QUEUED, WorkStatus.DEAD}),
    WorkStatus.PROCESSED: frozenset(),
    WorkStatus.DEAD: frozenset(),
}


@dataclass(frozen=True)
class WorkItem:
    """A unit of queued work, passed by value between queue and worker.

    ``event_type`` carries the type inferred at ingestion so that the
    classification step does not have to re-derive it.
    """

    queue: str
    payload: Any
    source: str = ""
    event_type: str | None = None
    item_id: str = field(default_factory=lambda: str(uuid4()))
    status: WorkStatus = WorkStatus.RECEIVED
    attempts: int = 0
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    available_at: datetime | None = None
    last_error: str | None = None

    def transition(self, status: WorkStatus, **changes: Any) -> WorkItem:
        """Return a copy in *status*. Raises ValueError for illegal moves."""
        if status not in _TRANSITIONS[self.status]:
            raise ValueError(f"Illegal work item transition {self.status} -> {status}")
        return replace(self, status=status, **changes)

    @property
    def terminal(self) -> bool:
        return not _TRANSITIONS[self.status]
