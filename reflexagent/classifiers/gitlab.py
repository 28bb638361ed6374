"""GitLab webhook classification."""

from __future__ import annotations

from collections.abc import Mapping

from reflexagent.classifiers.base import BaseClassifier, TypeHandler, observe
from reflexagent.extractors.dimensions import (
    UNKNOWN,
    as_number,
    as_text,
    branch_from_ref,
    dig,
    extract_gitlab_commit_count,
)
from reflexagent.models.events import Event
from reflexagent.models.metrics import MetricObservation


class GitlabEventClassifier(BaseClassifier):
    @property
    def handlers(self) -> Mapping[str, TypeHandler]:
        return {
            "push": self._push,
            "merge_request": self._merge_request,
            "pipeline": self._pipeline,
        }

    def _push(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        branch = branch_from_ref(event.data.get("ref"))
        return [
            observe("gitlab.push.total", 1, dims, branch=branch),
            observe("gitlab.push.commits", extract_gitlab_commit_count(event), dims, branch=branch),
        ]

    def _merge_request(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        action = as_text(dig(event.data, "object_attributes", "action"))
        if action == UNKNOWN:
            action = event.action or "total"
        return [
            observe("gitlab.merge_request.total", 1, dims, action=action),
            observe(f"gitlab.merge_request.{action}", 1, dims),
        ]

    def _pipeline(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        status = as_text(dig(event.data, "object_attributes", "status"))
        metrics = [observe("gitlab.pipeline.total", 1, dims, status=status)]
        duration = as_number(dig(event.data, "object_attributes", "duration"))
        if duration is not None:
            metrics.append(observe("gitlab.pipeline.duration", duration, dims, status=status))
        return metrics

    def classify_other(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        return [observe(f"gitlab.{event.event_type}.total", 1, dims)]
