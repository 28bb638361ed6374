"""Bitbucket webhook classification (``repo:push`` and ``pullrequest:*``)."""

from __future__ import annotations

from collections.abc import Mapping

from reflexagent.classifiers.base import BaseClassifier, TypeHandler, observe
from reflexagent.extractors.dimensions import extract_bitbucket_commit_count
from reflexagent.models.events import Event
from reflexagent.models.metrics import MetricObservation

_PR_ACTIONS = ("created", "approved", "merged", "rejected")


class BitbucketEventClassifier(BaseClassifier):
    @property
    def handlers(self) -> Mapping[str, TypeHandler]:
        table: dict[str, TypeHandler] = {"repo:push": self._push}
        table.update({f"pullrequest:{a}": self._pull_request for a in _PR_ACTIONS})
        return table

    def _push(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        return [
            observe("bitbucket.push.total", 1, dims),
            observe("bitbucket.push.commits", extract_bitbucket_commit_count(event), dims),
        ]

    def _pull_request(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        action = event.event_type.split(":", 1)[1]
        return [
            observe("bitbucket.pullrequest.total", 1, dims, action=action),
            observe(f"bitbucket.pullrequest.{action}", 1, dims),
        ]

    def classify_other(self, event: Event, dims: dict[str, str]) -> list[MetricObservation]:
        subtype = event.event_type.replace(":", ".")
        return [observe(f"bitbucket.{subtype}.total", 1, dims)]
