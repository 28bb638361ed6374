"""Event classification into dimensioned metric observations.

Exports:
    MetricClassifier       -- Source dispatcher used by the pipeline.
    BaseClassifier         -- ABC for per-source classifiers.
    infer_event_type       -- Type inference for payloads without a type header.
"""

from reflexagent.classifiers.base import BaseClassifier
from reflexagent.classifiers.bitbucket import BitbucketEventClassifier
from reflexagent.classifiers.ci import CIEventClassifier, TaskEventClassifier
from reflexagent.classifiers.classifier import MetricClassifier
from reflexagent.classifiers.generic import GenericEventClassifier
from reflexagent.classifiers.github import GithubEventClassifier
from reflexagent.classifiers.gitlab import GitlabEventClassifier
from reflexagent.classifiers.inference import infer_event_type
from reflexagent.classifiers.jira import JiraEventClassifier

__all__ = [
    "BaseClassifier",
    "BitbucketEventClassifier",
    "CIEventClassifier",
    "GenericEventClassifier",
    "GithubEventClassifier",
    "GitlabEventClassifier",
    "JiraEventClassifier",
    "MetricClassifier",
    "TaskEventClassifier",
    "infer_event_type",
]
