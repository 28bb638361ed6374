"""Shared classifier plumbing."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from datetime import datetime

from reflexagent.extractors.dimensions import DimensionExtractor, as_text
from reflexagent.models.events import Event
from reflexagent.models.metrics import Classification, MetricObservation

TypeHandler = Callable[[Event, dict[str, str]], list[MetricObservation]]


def metric_name(*parts: str) -> str:
    return ".".join(p for p in parts if p)


def observe(
    name: str,
    value: float,
    dimensions: Mapping[str, str],
    timestamp: datetime | None = None,
    **extra: object,
) -> MetricObservation:
    """Build an observation, merging *extra* into a copy of *dimensions*.

    Extra values go through ``as_text``: ``None``, empty strings and nested
    payload objects all become ``"unknown"``.
    """
    merged = dict(dimensions)
    for key, val in extra.items():
        merged[key] = as_text(val)
    return MetricObservation(name=name, value=value, dimensions=merged, timestamp=timestamp)


class BaseClassifier(ABC):
    """Turns one event into a list of metric observations.

    Subclasses register per-event-type handlers in ``handlers``; an event
    type with no handler falls through to ``classify_other``. Every
    classification starts with the overall ``<source>.<event_type>_count``
    observation. Classification does no I/O.
    """

    def __init__(self, extractor: DimensionExtractor | None = None) -> None:
        self._extractor = extractor or DimensionExtractor()

    @property
    @abstractmethod
    def handlers(self) -> Mapping[str, TypeHandler]:
        """Event type -> handler."""

    def classify(self, event: Event) -> Classification:
        dimensions = self._extractor.extract_dimensions(event)
        metrics = [self.count_observation(event, dimensions)]
        handler = self.handlers.get(event.event_type)
        if handler is not None:
            metrics.extend(handler(event, dimensions))
        else:
            metrics.extend(self.classify_other(event, dimensions))
        return Classification(metrics=metrics)

    def count_observation(self, event: Event, dimensions: Mapping[str, str]) -> MetricObservation:
        return observe(f"{event.source}.{event.event_type}_count", 1, dimensions)

    def classify_other(self, event: Event, dimensions: dict[str, str]) -> list[MetricObservation]:
        return []
