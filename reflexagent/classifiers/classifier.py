"""Source dispatch for event classification."""

from __future__ import annotations

from collections.abc import Mapping

import structlog

from reflexagent.classifiers.base import BaseClassifier
from reflexagent.classifiers.bitbucket import BitbucketEventClassifier
from reflexagent.classifiers.ci import CIEventClassifier, TaskEventClassifier
from reflexagent.classifiers.generic import GenericEventClassifier
from reflexagent.classifiers.github import GithubEventClassifier
from reflexagent.classifiers.gitlab import GitlabEventClassifier
from reflexagent.classifiers.jira import JiraEventClassifier
from reflexagent.extractors.dimensions import DimensionExtractor
from reflexagent.models.events import Event, EventSource
from reflexagent.models.metrics import Classification

_log = structlog.get_logger(component="classifiers")


def default_classifiers(extractor: DimensionExtractor) -> dict[EventSource, BaseClassifier]:
    return {
        EventSource.GITHUB: GithubEventClassifier(extractor),
        EventSource.GITLAB: GitlabEventClassifier(extractor),
        EventSource.JIRA: JiraEventClassifier(extractor),
        EventSource.BITBUCKET: BitbucketEventClassifier(extractor),
        EventSource.CI: CIEventClassifier(extractor),
        EventSource.TASK: TaskEventClassifier(extractor),
        EventSource.UNKNOWN: GenericEventClassifier(extractor),
    }


class MetricClassifier:
    """Routes an event to the classifier registered for its source.

    Raises ValueError at construction if any ``EventSource`` variant lacks a
    classifier, so an unhandled source can never reach ``classify``.
    """

    def __init__(
        self,
        classifiers: Mapping[EventSource, BaseClassifier] | None = None,
        extractor: DimensionExtractor | None = None,
    ) -> None:
        table = default_classifiers(extractor or DimensionExtractor())
        if classifiers:
            table.update(classifiers)
        missing = set(EventSource) - set(table)
        if missing:
            raise ValueError(f"No classifier registered for sources: {sorted(missing)}")
        self._classifiers = table

    def classify(self, event: Event) -> Classification:
        result = self._classifiers[event.kind].classify(event)
        _log.debug(
            "event_classified",
            event_id=event.event_id,
            event_name=event.name,
            observations=len(result.metrics),
        )
        return result
