"""Event-type inference for payloads that arrive without a type header.

Precedence, highest first:

1. an explicit type (argument, or the source's own type field)
2. a ``commits`` array                      -> ``push``
3. ``ref_type`` without commits             -> ``create`` / ``delete``
4. ``pull_request``                         -> ``pull_request``
5. ``issue`` without ``pull_request``       -> ``issues``
6. ``check_run`` / ``check_suite`` / ``workflow_run`` / ``workflow_job``
7. ``deployment_status`` / ``deployment``
8. unresolved                               -> ``None``
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from reflexagent.models.events import EventSource

# Field each source uses to name its own event type.
_EXPLICIT_TYPE_FIELDS: dict[EventSource, tuple[str, ...]] = {
    EventSource.GITHUB: (),
    EventSource.GITLAB: ("object_kind", "event_name"),
    EventSource.JIRA: ("webhookEvent",),
    EventSource.BITBUCKET: ("event_key",),
    EventSource.CI: ("type", "event"),
    EventSource.TASK: ("event", "status"),
    EventSource.UNKNOWN: ("type", "event", "action"),
}

_CI_FIELDS = ("check_run", "check_suite", "workflow_run", "workflow_job")
_DEPLOYMENT_FIELDS = ("deployment_status", "deployment")


def explicit_type(payload: Mapping[str, Any], source: EventSource) -> str | None:
    for key in _EXPLICIT_TYPE_FIELDS[source]:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            # Jira prefixes its own name: "jira:issue_created".
            return value.strip().removeprefix("jira:") if source is EventSource.JIRA else value.strip()
    return None


def infer_event_type(
    payload: Mapping[str, Any],
    explicit: str | None = None,
    source: EventSource = EventSource.GITHUB,
) -> str | None:
    """Resolve the event type of *payload*, or None if nothing matches."""
    if explicit and explicit.strip():
        return explicit.strip()
    declared = explicit_type(payload, source)
    if declared:
        return declared

    if isinstance(payload.get("commits"), list):
        return "push"
    if payload.get("ref_type") and "commits" not in payload:
        return "delete" if payload.get("deleted") else "create"
    if payload.get("pull_request"):
        return "pull_request"
    if payload.get("issue"):
        return "issues"
    for key in _CI_FIELDS:
        if payload.get(key):
            return key
    for key in _DEPLOYMENT_FIELDS:
        if payload.get(key):
            return key
    return None
