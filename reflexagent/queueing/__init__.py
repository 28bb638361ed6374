"""Backpressure-aware queueing.

Exports:
    QueueAdmissionController -- QueuePort: live-depth admission checks.
    QueueBackpressureError   -- "Retry later" signal for the ingestion boundary.
    QueueName                -- The four logical queues.
    InMemoryQueueBackend     -- In-process queue backend with delayed retries.
    QueueWorker              -- Batch consumer with bounded retry and dead letters.
    RetryPolicy              -- Retry count and exponential backoff.
    QueueMonitor             -- Periodic depth reporting.
"""

from reflexagent.queueing.admission import QueueAdmissionController, QueueBackpressureError, QueueName
from reflexagent.queueing.backend import InMemoryQueueBackend, QueueBackend
from reflexagent.queueing.monitor import QueueMonitor, QueueStats
from reflexagent.queueing.retry import RetryPolicy
from reflexagent.queueing.worker import BatchResult, QueueWorker

__all__ = [
    "BatchResult",
    "InMemoryQueueBackend",
    "QueueAdmissionController",
    "QueueBackend",
    "QueueBackpressureError",
    "QueueMonitor",
    "QueueName",
    "QueueStats",
    "QueueWorker",
    "RetryPolicy",
]
