"""Raw payload parsing.

The parser never coerces a malformed payload into an Event: anything that is
not a JSON object raises InvalidPayloadError and the caller decides the
transport-level response.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from reflexagent.classifiers.inference import infer_event_type
from reflexagent.extractors.dimensions import parse_timestamp
from reflexagent.models.events import Event, EventSource

_TIMESTAMP_FIELDS = ("timestamp", "event_time")


class InvalidPayloadError(ValueError):
    """Payload is not valid JSON, not an object, or lacks a source."""

    def __init__(self, reason: str, source: str = "") -> None:
        super().__init__(reason)
        self.reason = reason
        self.source = source


def decode_payload(raw: str | bytes | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, bytes | bytearray):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidPayloadError(f"payload is not valid UTF-8: {exc}") from exc
    if not isinstance(raw, str):
        raise InvalidPayloadError(f"unsupported payload type {type(raw).__name__}")
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidPayloadError(f"payload is not valid JSON: {exc.msg}") from exc
    if not isinstance(decoded, dict):
        raise InvalidPayloadError(f"payload must be a JSON object, got {type(decoded).__name__}")
    return decoded


def event_name_for(source: str, payload: Mapping[str, Any], event_type: str | None = None) -> str:
    """Dotted event name, e.g. ``github.pull_request.opened``.

    An unresolvable type yields ``<source>.unknown``, which routes to the
    minimal classification path.
    """
    kind = EventSource.resolve(source)
    resolved = infer_event_type(payload, explicit=event_type, source=kind) or "unknown"
    name = f"{source}.{resolved}"
    action = payload.get("action")
    if kind is EventSource.GITHUB and isinstance(action, str) and action and resolved != action:
        name = f"{name}.{action}"
    return name


def parse_payload(
    raw: str | bytes | Mapping[str, Any],
    source: str,
    event_type: str | None = None,
    event_id: str | None = None,
) -> Event:
    """Build an Event from an untrusted payload and its declared source."""
    source = (source or "").strip().lower()
    if not source:
        raise InvalidPayloadError("source must not be blank")
    payload = decode_payload(raw)

    timestamp: datetime | None = None
    for key in _TIMESTAMP_FIELDS:
        timestamp = parse_timestamp(payload.get(key))
        if timestamp is not None:
            break
    if timestamp is not None and timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)

    return Event(
        name=event_name_for(source, payload, event_type),
        source=source,
        timestamp=timestamp or datetime.now(tz=UTC),
        data=payload,
        event_id=event_id or "",
    )
