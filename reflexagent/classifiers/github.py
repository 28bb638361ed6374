"""GitHub webhook classification.

Push events carry the richest schema: commit counts, conventional-commit
types, per-file directory and filetype changes, and code volume when the
commits include ``stats``. Other event types emit totals, per-action
counts and durations.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Mapping
from typing import Any

from reflexagent.classifiers.base import BaseClassifier, TypeHandler, metric_name, observe
from reflexagent.extractors.dimensions import (
    UNKNOWN,
    as_number,
    as_text,
    branch_from_ref,
    dig,
    extract_code_volume,
    extract_commit_count,
    extract_file_changes,
    parse_timestamp,
)
from reflexagent.models.events import Event
from reflexagent.models.metrics import MetricObservation

_CONVENTIONAL_COMMIT = re.compile(
    r"^(feat|fix|docs|style|refactor|perf|test|build|ci|chore|revert)(?:\(([^)]+)\))?(!)?:\s*(.+)$",
    re.IGNORECASE,
)

# First match wins.
_INFERRED_TYPES: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (commit_type, re.compile(pattern))
    for commit_type, pattern in (
        ("fix", r"fix|bug|issue|problem|error"),
        ("feat", r"feat|feature|add|new|implement"),
        ("docs", r"doc|readme|comment|guide"),
        ("test", r"test|spec|rspec"),
        ("style", r"style|format|indent|css"),
        ("refactor", r"refactor|clean|improve|simplify"),
        ("perf", r"perf|performance|optimize|speed"),
        ("build", r"build|webpack|deps|dependency"),
        ("ci", r"ci|travis|jenkins|github|action"),
        ("revert", r"revert|rollback|undo"),
    )
)


def parse_commit_message(message: Any) -> dict[str, Any]:
    """Split a commit message into type, scope, breaking flag and description.

    Non-conventional messages get a keyword-inferred type and ``scope=None``.
    """
    text = message.strip() if isinstance(message, str) else ""
    first_line = text.splitlines()[0] if text else ""
    match = _CONVENTIONAL_COMMIT.match(first_line)
    if match:
        return {
            "type": match.group(1).lower(),
            "scope": match.group(2),
            "breaking": bool(match.group(3)) or "BREAKING CHANGE" in text,
            "description": match.group(4),
            "conventional": True,
        }
    return {
        "type": infer_commit_type(first_line),
        "scope": None,
        "breaking": "BREAKING CHANGE" in text,
        "description": first_line,
        "conventional": False,
    }


def infer_commit_type(message: str) -> str:
    lowered = message.lower()
    for commit_type, pattern in _INFERRED_TYPES:
        if pattern.search(lowered):
            return commit_type
    return "chore"


def _minutes_between(start: Any, end: Any) -> int | None:
    started, finished = parse_timestamp(start), parse_timestamp(end)
    if started is None or finished is None:
        return None
    try:
        return max(int((finished - started).total_seconds() // 60), 0)
    except TypeError:
        return None


def _seconds_between(start: Any, end: Any) -> int | None:
    started, finished = parse_timestamp(start), parse_timestamp(end)
    if started is None or finished is None:
        return None
    try:
        return max(int((finished - started).total_seconds()), 0)
    except TypeError:
        return None


class GithubEventClassifier(BaseClassifier):
    """Classifier for events whose name starts with ``github.``."""

    @property
    def handlers(self) -> Mapping[str, TypeHandler]:
        return {
            "push": self._push,
            "pull_request": self._pull_request,
            "issues": self._issues,
            "check_run": self._check,
            "check_suite": self._check,
            "create": self._ref_operation,
            "delete": self._ref_operation,
            "deployment": self._deployment,
            "deployment_status": self._deployment_status,
            "workflow_run": self._workflow_run,
            "workflow_job": self._workflow_job,
            "repository": self._repository,
            "ci": self._ci,
        }

    def classify_other(self, event: Event, dimensions: dict[str, str]) -> list[MetricObservation]:
        return [observe(metric_name("github", event.event_type, event.action or "total"), 1, dimensions)]

    # ------------------------------------------------------------------
    # push
    # ------------------------------------------------------------------

    def _push(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        metrics = [
            observe("github.push.total", 1, dims),
            observe("github.push.commits.total", extract_commit_count(event), dims),
            observe("github.push.by_author", 1, dims),
            observe("github.push.branch_activity", 1, dims),
        ]
        metrics.extend(self._commit_metrics(event, dims))
        metrics.extend(self._file_metrics(event, dims))
        return metrics

    def _commit_metrics(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        metrics: list[MetricObservation] = []
        by_date: Counter[str] = Counter()
        commits = event.data.get("commits")
        for commit in commits if isinstance(commits, list) else []:
            if not isinstance(commit, Mapping):
                continue
            committed_at = parse_timestamp(commit.get("timestamp"))
            if committed_at is not None:
                by_date[committed_at.date().isoformat()] += 1

            parts = parse_commit_message(commit.get("message"))
            metrics.append(
                observe(
                    "github.push.commit_type",
                    1,
                    dims,
                    type=parts["type"],
                    scope=parts["scope"] or "none",
                    conventional="true" if parts["conventional"] else "false",
                )
            )
            if parts["breaking"]:
                author = dims.get("author", UNKNOWN)
                if author == UNKNOWN:
                    author = as_text(dig(commit, "author", "name"))
                metrics.append(
                    observe(
                        "github.push.breaking_change",
                        1,
                        dims,
                        type=parts["type"],
                        scope=parts["scope"] or "none",
                        author=author,
                    )
                )

        for commit_date, count in sorted(by_date.items()):
            metrics.append(observe("github.commit_volume.daily", count, dims, commit_date=commit_date))
        return metrics

    def _file_metrics(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        changes = extract_file_changes(event)
        metrics = [
            observe(f"github.push.files_{kind}", len({c.path for c in changes if c.change == kind}), dims)
            for kind in ("added", "modified", "removed")
        ]

        directories = Counter(c.directory for c in changes)
        filetypes = Counter(c.filetype for c in changes)
        for directory, count in sorted(directories.items()):
            metrics.append(observe("github.push.directory_changes", count, dims, directory=directory))
        for filetype, count in sorted(filetypes.items()):
            metrics.append(observe("github.push.filetype_changes", count, dims, filetype=filetype))
        if directories:
            directory, count = max(sorted(directories.items()), key=lambda item: item[1])
            metrics.append(observe("github.push.directory_hotspot", count, dims, directory=directory))
        if filetypes:
            filetype, count = max(sorted(filetypes.items()), key=lambda item: item[1])
            metrics.append(observe("github.push.filetype_hotspot", count, dims, filetype=filetype))

        additions, deletions = extract_code_volume(event)
        if additions or deletions:
            metrics.extend(
                [
                    observe("github.push.code_additions", additions, dims),
                    observe("github.push.code_deletions", deletions, dims),
                    observe("github.push.code_churn", additions + deletions, dims),
                ]
            )
        return metrics

    # ------------------------------------------------------------------
    # pull requests and issues
    # ------------------------------------------------------------------

    def _pull_request(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        action = event.action or "total"
        pr = event.data.get("pull_request")
        pr = pr if isinstance(pr, Mapping) else {}
        author = as_text(dig(pr, "user", "login"))
        metrics = [
            observe("github.pull_request.total", 1, dims, action=action),
            observe(f"github.pull_request.{action}", 1, dims),
            observe("github.pull_request.by_author", 1, dims, author=author, action=action),
        ]
        if action == "closed" and pr.get("merged"):
            metrics.append(observe("github.pull_request.merged", 1, dims, author=author))
            minutes = _minutes_between(pr.get("created_at"), pr.get("merged_at"))
            if minutes is not None:
                metrics.append(observe("github.pull_request.time_to_merge", minutes, dims, author=author))
        return metrics

    def _issues(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        action = event.action or "total"
        issue = event.data.get("issue")
        issue = issue if isinstance(issue, Mapping) else {}
        author = as_text(dig(issue, "user", "login"))
        metrics = [
            observe("github.issues.total", 1, dims, action=action),
            observe(f"github.issues.{action}", 1, dims),
            observe("github.issues.by_author", 1, dims, author=author, action=action),
        ]
        if action == "closed":
            minutes = _minutes_between(issue.get("created_at"), issue.get("closed_at"))
            if minutes is not None:
                metrics.append(observe("github.issues.time_to_close", minutes, dims))
        return metrics

    # ------------------------------------------------------------------
    # checks, refs, deployments
    # ------------------------------------------------------------------

    def _check(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        entity = event.event_type
        check = event.data.get(entity)
        check = check if isinstance(check, Mapping) else {}
        return [
            observe(
                metric_name("github", entity, event.action or "total"),
                1,
                dims,
                status=check.get("status"),
                conclusion=check.get("conclusion"),
            )
        ]

    def _ref_operation(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        operation = event.event_type
        ref_type = as_text(event.data.get("ref_type"))
        ref = event.data.get("ref")
        branch = ref if isinstance(ref, str) and ref and "/" not in ref else branch_from_ref(ref)
        return [
            observe(f"github.{operation}.total", 1, dims, ref_type=ref_type),
            observe(metric_name("github", operation, ref_type), 1, dims, branch=branch),
        ]

    def _deployment(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        deployment = event.data.get("deployment")
        deployment = deployment if isinstance(deployment, Mapping) else {}
        return [
            observe(
                "github.deployment.created",
                1,
                dims,
                environment=deployment.get("environment"),
                task=deployment.get("task"),
            )
        ]

    def _deployment_status(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        status = event.data.get("deployment_status")
        status = status if isinstance(status, Mapping) else {}
        deployment = event.data.get("deployment")
        deployment = deployment if isinstance(deployment, Mapping) else {}
        state = as_text(status.get("state"))
        environment = status.get("environment") or deployment.get("environment")
        metrics = [observe("github.deployment_status.updated", 1, dims, state=state, environment=environment)]
        if state == "success":
            metrics.append(observe("github.deployment.success", 1, dims, environment=environment))
            seconds = _seconds_between(deployment.get("created_at"), status.get("created_at"))
            if seconds is not None:
                metrics.append(observe("github.deployment.time", seconds, dims, environment=environment))
        elif state in ("failure", "error"):
            metrics.append(observe("github.deployment.failure", 1, dims, environment=environment))
        return metrics

    # ------------------------------------------------------------------
    # workflows
    # ------------------------------------------------------------------

    def _workflow_run(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        action = event.action or "total"
        run = event.data.get("workflow_run")
        run = run if isinstance(run, Mapping) else {}
        workflow = run.get("name")
        metrics = [
            observe("github.workflow_run.total", 1, dims, workflow=workflow),
            observe(f"github.workflow_run.{action}", 1, dims, workflow=workflow),
        ]
        conclusion = run.get("conclusion")
        if isinstance(conclusion, str) and conclusion:
            metrics.append(observe(f"github.workflow_run.{conclusion}", 1, dims, workflow=workflow))
        if action == "completed":
            seconds = _seconds_between(run.get("run_started_at") or run.get("created_at"), run.get("updated_at"))
            if seconds is not None:
                metrics.append(
                    observe(
                        "github.workflow_run.duration",
                        seconds,
                        dims,
                        workflow=workflow,
                        conclusion=conclusion,
                    )
                )
        return metrics

    def _workflow_job(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        action = event.action or "total"
        job = event.data.get("workflow_job")
        job = job if isinstance(job, Mapping) else {}
        name = job.get("name")
        metrics = [
            observe("github.workflow_job.total", 1, dims, job=name),
            observe(f"github.workflow_job.{action}", 1, dims, job=name),
        ]
        if action == "completed":
            seconds = _seconds_between(job.get("started_at"), job.get("completed_at"))
            if seconds is not None:
                metrics.append(
                    observe(
                        "github.workflow_job.duration",
                        seconds,
                        dims,
                        job=name,
                        conclusion=job.get("conclusion"),
                    )
                )
        return metrics

    def _repository(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        return [observe(metric_name("github", "repository", event.action or "total"), 1, dims)]

    # ------------------------------------------------------------------
    # github.ci.* (CI signals relayed through GitHub)
    # ------------------------------------------------------------------

    def _ci(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        kind = event.action or "total"
        status = as_text(event.data.get("status"))
        metrics = [observe(metric_name("github", "ci", kind), 1, dims, status=status)]
        if kind == "deploy" and status in ("failure", "failed"):
            metrics.append(observe("github.ci.deploy.incident", 1, dims))
        duration = as_number(event.data.get("duration"))
        if duration is not None:
            metrics.append(observe(metric_name("github", "ci", kind, "duration"), duration, dims))
        lead_time = as_number(event.data.get("lead_time"))
        if kind == "lead_time" and lead_time is not None:
            metrics.append(observe("github.ci.lead_time.value", lead_time, dims))
        return metrics
