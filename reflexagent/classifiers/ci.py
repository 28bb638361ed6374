"""Classifiers for generic CI and task-tracker events."""

from __future__ import annotations

from collections.abc import Mapping

from reflexagent.classifiers.base import BaseClassifier, TypeHandler, observe
from reflexagent.extractors.dimensions import as_number, as_text, extract_ci_duration
from reflexagent.models.events import Event
from reflexagent.models.metrics import MetricObservation

_FAILED = ("failure", "failed", "error")


class CIEventClassifier(BaseClassifier):
    """``ci.build``, ``ci.deploy`` and ``ci.lead_time`` events."""

    @property
    def handlers(self) -> Mapping[str, TypeHandler]:
        return {"build": self._build, "deploy": self._deploy, "lead_time": self._lead_time}

    def _status(self, event: Event) -> str:
        return as_text(event.data.get("status"))

    def _build(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        status = self._status(event)
        metrics = [
            observe("ci.build.total", 1, dims, status=status),
            observe(f"ci.build.{status}", 1, dims),
        ]
        duration = extract_ci_duration(event)
        if duration > 0:
            metrics.append(observe("ci.build.duration", duration, dims, status=status))
        return metrics

    def _deploy(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        status = self._status(event)
        environment = event.data.get("environment")
        metrics = [
            observe("ci.deploy.total", 1, dims, status=status, environment=environment),
            observe(f"ci.deploy.{status}", 1, dims, environment=environment),
        ]
        if status in _FAILED:
            metrics.append(observe("ci.deploy.incident", 1, dims, environment=environment))
        duration = extract_ci_duration(event)
        if duration > 0:
            metrics.append(observe("ci.deploy.duration", duration, dims, environment=environment))
        return metrics

    def _lead_time(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        lead_time = as_number(event.data.get("lead_time"))
        if lead_time is not None:
            return [observe("ci.lead_time", lead_time, dims)]
        return []

    def classify_other(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        return [observe(f"ci.{event.event_type}.total", 1, dims)]


class TaskEventClassifier(BaseClassifier):
    """``task.created`` / ``task.completed`` events from task trackers."""

    @property
    def handlers(self) -> Mapping[str, TypeHandler]:
        return {"created": self._lifecycle, "completed": self._lifecycle}

    def _lifecycle(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        metrics = [observe(f"task.{event.event_type}", 1, dims)]
        if event.event_type == "completed":
            duration = extract_ci_duration(event)
            if duration > 0:
                metrics.append(observe("task.cycle_time", duration, dims))
        return metrics

    def classify_other(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        return [observe(f"task.{event.event_type}.total", 1, dims)]
