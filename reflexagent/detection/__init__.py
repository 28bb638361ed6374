"""Anomaly detection over aggregate metrics."""

from reflexagent.detection.detector import (
    AnomalyDetector,
    StaticThresholdPolicy,
    StatisticalPolicy,
    Threshold,
    evaluate,
    severity_for,
)

__all__ = [
    "AnomalyDetector",
    "StaticThresholdPolicy",
    "StatisticalPolicy",
    "Threshold",
    "evaluate",
    "severity_for",
]
