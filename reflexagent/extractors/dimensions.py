"""Dimension extraction for every supported webhook source.

Every function in this module is total over partial payloads: a missing or
wrongly-typed field yields the ``"unknown"`` sentinel (or a neutral count),
never an exception. Dimension values are always strings so that grouping in
the aggregator never has to deal with ``None``.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from reflexagent.models.events import Event, EventSource

UNKNOWN = "unknown"
ROOT_DIRECTORY = "root"
NO_FILETYPE = "none"

_REF_PATTERN = re.compile(r"^refs/(?:heads|tags)/(.+)$")
_CHANGE_KINDS = ("added", "modified", "removed")


# ---------------------------------------------------------------------------
# Payload access
# ---------------------------------------------------------------------------


def dig(data: Any, *keys: str) -> Any:
    """Walk nested mappings; return None as soon as a step is missing."""
    current = data
    for key in keys:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def as_text(value: Any) -> str:
    """Coerce a scalar payload value to a dimension string; containers are ``"unknown"``."""
    if value is None or isinstance(value, Mapping | list):
        return UNKNOWN
    text = str(value).strip()
    return text or UNKNOWN


def as_number(value: Any) -> float | None:
    """A finite int or float payload value, else None.

    JSON numbers such as ``1e999`` decode to ``inf``; those are dropped here.
    """
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 payload timestamp, accepting a trailing ``Z``."""
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def extract_org_from_repo(full_name: Any) -> str:
    """``"org/repo"`` -> ``"org"``; None or empty -> ``"unknown"``."""
    if not isinstance(full_name, str) or not full_name.strip():
        return UNKNOWN
    org = full_name.strip().split("/", 1)[0]
    return org or UNKNOWN


def extract_commit_count(event: Event) -> int:
    """Number of commits in the payload; a push with no list counts as one."""
    commits = _list(event.data.get("commits"))
    return len(commits) if commits else 1


def extract_author(event: Event) -> str:
    """``sender.login``, then ``pusher.name``, else ``"unknown"``."""
    for path in (("sender", "login"), ("pusher", "name")):
        value = dig(event.data, *path)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return UNKNOWN


def branch_from_ref(ref: Any) -> str:
    if not isinstance(ref, str):
        return UNKNOWN
    match = _REF_PATTERN.match(ref)
    return match.group(1) if match else UNKNOWN


def extract_branch(event: Event) -> str:
    """Suffix of ``refs/heads/<x>`` or ``refs/tags/<x>``; otherwise ``"unknown"``."""
    return branch_from_ref(event.data.get("ref"))


def split_path(path: str) -> tuple[str, str]:
    """Return ``(directory, filetype)`` for a repository-relative path."""
    directory, sep, basename = path.rpartition("/")
    if not sep or not directory:
        directory = ROOT_DIRECTORY
    stem, dot, ext = basename.rpartition(".")
    filetype = ext.lower() if dot and stem and ext else NO_FILETYPE
    return directory, filetype


@dataclass(frozen=True)
class FileChange:
    """One file touched by one commit."""

    commit_id: str
    change: str
    path: str
    directory: str
    filetype: str


def extract_file_changes(event: Event) -> list[FileChange]:
    """One entry per file per commit across ``added``/``modified``/``removed``."""
    changes: list[FileChange] = []
    for index, commit in enumerate(_list(event.data.get("commits"))):
        if not isinstance(commit, Mapping):
            continue
        commit_id = as_text(commit.get("id")) if commit.get("id") else f"commit-{index}"
        for kind in _CHANGE_KINDS:
            for path in _list(commit.get(kind)):
                if not isinstance(path, str) or not path.strip():
                    continue
                directory, filetype = split_path(path.strip())
                changes.append(FileChange(commit_id, kind, path.strip(), directory, filetype))
    return changes


def extract_code_volume(event: Event) -> tuple[int, int]:
    """Sum ``stats.additions`` / ``stats.deletions`` across commits.

    Totals too large to represent as a float count as ``(0, 0)``.
    """
    additions = deletions = 0
    for commit in _list(event.data.get("commits")):
        stats = dig(commit, "stats")
        if not isinstance(stats, Mapping):
            continue
        additions += _as_int(stats.get("additions"))
        deletions += _as_int(stats.get("deletions"))
    if any(as_number(total) is None for total in (additions, deletions, additions + deletions)):
        return 0, 0
    return additions, deletions


def _as_int(value: Any) -> int:
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            return 0
    number = as_number(value)
    return int(number) if number is not None else 0


def extract_jira_issue_type(event: Event) -> str:
    return as_text(dig(event.data, "issue", "fields", "issuetype", "name"))


def extract_gitlab_commit_count(event: Event) -> int:
    commits = _list(event.data.get("commits"))
    if commits:
        return len(commits)
    total = _as_int(event.data.get("total_commits_count"))
    return total if total > 0 else 1


def extract_bitbucket_commit_count(event: Event) -> int:
    """Commits across ``push.changes``; a push with none listed counts as one."""
    changes = _list(dig(event.data, "push", "changes"))
    total = sum(len(_list(dig(change, "commits"))) for change in changes)
    return total if total > 0 else 1


def extract_ci_duration(event: Event) -> float:
    """Duration in seconds from start/end timestamps, else ``duration``, else 0."""
    start = parse_timestamp(event.data.get("start_time"))
    end = parse_timestamp(event.data.get("end_time"))
    if start is not None and end is not None:
        try:
            return max((end - start).total_seconds(), 0.0)
        except TypeError:
            return 0.0
    duration = as_number(event.data.get("duration"))
    return duration if duration is not None else 0.0


# ---------------------------------------------------------------------------
# Per-source dimension sets
# ---------------------------------------------------------------------------


def _github(event: Event) -> dict[str, str]:
    full_name = dig(event.data, "repository", "full_name")
    dimensions = {
        "repository": as_text(full_name),
        "organization": extract_org_from_repo(full_name),
        "source": event.source,
    }
    if event.event_type == "push":
        dimensions["branch"] = extract_branch(event)
        dimensions["author"] = extract_author(event)
    return dimensions


def _jira(event: Event) -> dict[str, str]:
    project = dig(event.data, "issue", "fields", "project", "key") or dig(event.data, "project", "key")
    return {"project": as_text(project), "source": event.source}


def _gitlab(event: Event) -> dict[str, str]:
    return {
        "project": as_text(dig(event.data, "project", "path_with_namespace")),
        "source": event.source,
    }


def _bitbucket(event: Event) -> dict[str, str]:
    return {
        "repository": as_text(dig(event.data, "repository", "full_name")),
        "source": event.source,
    }


def _ci(event: Event) -> dict[str, str]:
    return {
        "project": as_text(event.data.get("project")),
        "provider": as_text(event.data.get("provider")),
        "source": event.source,
    }


def _task(event: Event) -> dict[str, str]:
    return {
        "project": as_text(event.data.get("project")),
        "task_type": as_text(event.data.get("type")),
        "source": event.source,
    }


def _generic(event: Event) -> dict[str, str]:
    return {"source": event.source}


class DimensionExtractor:
    """Dispatches dimension extraction by resolved event source.

    The handler table must cover every ``EventSource`` variant; construction
    fails otherwise, so adding a source without a handler is caught early.
    """

    def __init__(
        self,
        handlers: Mapping[EventSource, Callable[[Event], dict[str, str]]] | None = None,
    ) -> None:
        table = dict(_HANDLERS)
        if handlers:
            table.update(handlers)
        missing = set(EventSource) - set(table)
        if missing:
            raise ValueError(f"No dimension handler for sources: {sorted(missing)}")
        self._handlers = table

    def extract_dimensions(self, event: Event) -> dict[str, str]:
        return self._handlers[event.kind](event)

    def iter_file_dimensions(self, event: Event) -> Iterator[tuple[FileChange, dict[str, str]]]:
        """Base dimensions merged with ``directory`` and ``filetype`` per file change."""
        base = self.extract_dimensions(event)
        for change in extract_file_changes(event):
            yield change, {**base, "directory": change.directory, "filetype": change.filetype}


_HANDLERS: dict[EventSource, Callable[[Event], dict[str, str]]] = {
    EventSource.GITHUB: _github,
    EventSource.JIRA: _jira,
    EventSource.GITLAB: _gitlab,
    EventSource.BITBUCKET: _bitbucket,
    EventSource.CI: _ci,
    EventSource.TASK: _task,
    EventSource.UNKNOWN: _generic,
}
