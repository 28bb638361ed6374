"""Fallback classifier for sources without a dedicated handler."""

from __future__ import annotations

from collections.abc import Mapping

from reflexagent.classifiers.base import BaseClassifier, TypeHandler


class GenericEventClassifier(BaseClassifier):
    """Emits only the overall count metric with ``{source: <source>}``."""

    @property
    def handlers(self) -> Mapping[str, TypeHandler]:
        return {}
