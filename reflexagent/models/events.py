"""Core event data structures and enumerations."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4


class EventSource(StrEnum):
    """Webhook sources the classification pipeline knows how to handle.

    ``UNKNOWN`` is an explicit variant: any other source string resolves to it
    and is handled by the generic path rather than rejected.
    """

    GITHUB = "github"
    GITLAB = "gitlab"
    JIRA = "jira"
    BITBUCKET = "bitbucket"
    CI = "ci"
    TASK = "task"
    UNKNOWN = "unknown"

    @classmethod
    def resolve(cls, source: str, name: str = "") -> EventSource:
        """Map a declared source string (or a dotted event name) to a variant."""
        for candidate in (source, name.split(".", 1)[0] if name else ""):
            key = (candidate or "").strip().lower()
            try:
                resolved = cls(key)
            except ValueError:
                continue
            if resolved is not cls.UNKNOWN:
                return resolved
        return cls.UNKNOWN


@dataclass(frozen=True)
class Event:
    """Canonical ingested event.

    Created at the ingestion boundary and never mutated afterwards. ``data``
    holds the decoded source payload and defaults to an empty mapping.
    """

    name: str
    source: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    data: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid4()))

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("Event name must be a non-empty string")
        if not isinstance(self.source, str) or not self.source.strip():
            raise ValueError("Event source must be a non-empty string")
        if self.data is None:
            object.__setattr__(self, "data", {})
        elif not isinstance(self.data, Mapping):
            raise ValueError(f"Event data must be a mapping, got {type(self.data).__name__}")
        if not self.event_id:
            object.__setattr__(self, "event_id", str(uuid4()))

    @property
    def kind(self) -> EventSource:
        return EventSource.resolve(self.source, self.name)

    @property
    def event_type(self) -> str:
        """Second segment of the dotted name (``github.push`` -> ``push``)."""
        parts = self.name.split(".")
        return parts[1] if len(parts) > 1 and parts[1] else parts[0]

    @property
    def action(self) -> str | None:
        """Third segment of the dotted name, or the payload's ``action`` key."""
        parts = self.name.split(".")
        if len(parts) > 2 and parts[2]:
            return parts[2]
        action = self.data.get("action")
        return str(action) if action else None
