"""Prometheus instruments for the ingestion, aggregation and alerting pipeline.

All instruments live in the default registry so ``prometheus_client``'s
exposition helpers pick them up without extra wiring.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

events_ingested_total = Counter(
    "reflexagent_events_ingested_total",
    "Raw webhook events admitted to the raw_events queue",
    ["source"],
)

events_rejected_total = Counter(
    "reflexagent_events_rejected_total",
    "Raw webhook events rejected at the ingestion boundary",
    ["reason"],
)

observations_total = Counter(
    "reflexagent_observations_total",
    "Metric observations produced by classification",
    ["source"],
)

aggregates_updated_total = Counter(
    "reflexagent_aggregates_updated_total",
    "Aggregate bucket increments applied to storage",
    ["granularity"],
)

alerts_total = Counter(
    "reflexagent_alerts_total",
    "Alerts raised by the anomaly detector",
    ["severity"],
)

notifications_total = Counter(
    "reflexagent_notifications_total",
    "Notification delivery attempts",
    ["channel", "success"],
)

queue_depth = Gauge(
    "reflexagent_queue_depth",
    "Current depth of each work queue",
    ["queue"],
)

queue_rejections_total = Counter(
    "reflexagent_queue_rejections_total",
    "Enqueue requests refused because of backpressure",
    ["queue"],
)

work_items_failed_total = Counter(
    "reflexagent_work_items_failed_total",
    "Work item processing attempts that raised",
    ["queue"],
)

dead_letters_total = Counter(
    "reflexagent_dead_letters_total",
    "Work items moved to the dead-letter list after exhausting retries",
    ["queue"],
)

aggregation_skipped_total = Counter(
    "reflexagent_aggregation_skipped_total",
    "Recorded observations the aggregator could not apply to a bucket",
    ["granularity"],
)
