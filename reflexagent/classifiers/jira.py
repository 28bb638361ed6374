"""Jira webhook classification (``jira.issue_*`` and ``jira.sprint_*``)."""

from __future__ import annotations

from collections.abc import Mapping

from reflexagent.classifiers.base import BaseClassifier, TypeHandler, observe
from reflexagent.extractors.dimensions import extract_jira_issue_type
from reflexagent.models.events import Event
from reflexagent.models.metrics import MetricObservation

_ISSUE_ACTIONS = ("created", "updated", "resolved", "deleted")
_SPRINT_ACTIONS = ("started", "closed")


class JiraEventClassifier(BaseClassifier):
    @property
    def handlers(self) -> Mapping[str, TypeHandler]:
        table: dict[str, TypeHandler] = {f"issue_{a}": self._issue for a in _ISSUE_ACTIONS}
        table.update({f"sprint_{a}": self._sprint for a in _SPRINT_ACTIONS})
        return table

    def _issue(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        action = event.event_type.removeprefix("issue_")
        return [
            observe("jira.issue.total", 1, dims, action=action),
            observe(f"jira.issue.{action}", 1, dims),
            observe("jira.issue.by_type", 1, dims, issue_type=extract_jira_issue_type(event)),
        ]

    def _sprint(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        action = event.event_type.removeprefix("sprint_")
        return [observe(f"jira.sprint.{action}", 1, dims)]

    def classify_other(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        return [observe(f"jira.{event.event_type}.total", 1, dims)]
