"""Metric aggregation into 5-minute, hourly and daily buckets."""

from reflexagent.aggregation.aggregator import (
    AggregationJob,
    MetricAggregator,
    combine_observations,
    record_observations,
)

__all__ = ["AggregationJob", "MetricAggregator", "combine_observations", "record_observations"]
