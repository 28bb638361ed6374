"""Tests for queue admission, the in-memory backend, workers and the monitor."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from reflexagent.models.queue import WorkItem, WorkStatus
from reflexagent.queueing import (
    BatchResult,
    InMemoryQueueBackend,
    QueueAdmissionController,
    QueueBackpressureError,
    QueueMonitor,
    QueueName,
    QueueWorker,
    RetryPolicy,
)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _limits(**overrides: int) -> dict[str, int]:
    limits = {q.value: 5 for q in QueueName}
    limits.update(overrides)
    return limits


async def _fill(backend: InMemoryQueueBackend, queue: QueueName, count: int) -> None:
    for _ in range(count):
        await backend.push(WorkItem(queue=queue.value, payload={}, status=WorkStatus.QUEUED))


# ---------------------------------------------------------------------------
# Work items
# ---------------------------------------------------------------------------


class TestWorkItem:
    def test_happy_path(self) -> None:
        item = WorkItem(queue="raw_events", payload={})
        item = item.transition(WorkStatus.QUEUED).transition(WorkStatus.PROCESSING)
        done = item.transition(WorkStatus.PROCESSED)
        assert done.terminal
        assert not item.terminal

    @pytest.mark.parametrize(
        "start,target",
        [
            (WorkStatus.RECEIVED, WorkStatus.PROCESSING),
            (WorkStatus.QUEUED, WorkStatus.PROCESSED),
            (WorkStatus.PROCESSED, WorkStatus.QUEUED),
            (WorkStatus.DEAD, WorkStatus.QUEUED),
        ],
    )
    def test_illegal_transitions(self, start: WorkStatus, target: WorkStatus) -> None:
        with pytest.raises(ValueError, match="Illegal"):
            WorkItem(queue="q", payload=None, status=start).transition(target)

    def test_transition_returns_copy(self) -> None:
        item = WorkItem(queue="q", payload=None)
        queued = item.transition(WorkStatus.QUEUED)
        assert item.status is WorkStatus.RECEIVED
        assert queued.item_id == item.item_id


# ---------------------------------------------------------------------------
# Admission
# ---------------------------------------------------------------------------


class TestAdmission:
    def test_every_queue_needs_a_limit(self, backend: InMemoryQueueBackend) -> None:
        with pytest.raises(ValueError, match="anomaly_detection"):
            QueueAdmissionController(backend, {"raw_events": 1, "event_processing": 1, "metric_calculation": 1})

    async def test_depth_at_limit_is_backpressure(self, backend: InMemoryQueueBackend) -> None:
        admission = QueueAdmissionController(backend, _limits(metric_calculation=3))
        await _fill(backend, QueueName.METRIC_CALCULATION, 2)
        assert not await admission.is_backpressured()
        await _fill(backend, QueueName.METRIC_CALCULATION, 1)
        assert await admission.is_backpressured()

    async def test_depths_are_live(self, backend: InMemoryQueueBackend) -> None:
        admission = QueueAdmissionController(backend, _limits())
        assert (await admission.queue_depths())[QueueName.RAW_EVENTS.value] == 0
        await admission.enqueue_raw_event({"a": 1}, "github", "push")
        assert (await admission.queue_depths())[QueueName.RAW_EVENTS.value] == 1
        await backend.pull(QueueName.RAW_EVENTS.value, 10)
        assert (await admission.queue_depths())[QueueName.RAW_EVENTS.value] == 0

    async def test_raw_event_item_carries_type(self, backend: InMemoryQueueBackend) -> None:
        admission = QueueAdmissionController(backend, _limits())
        item_id = await admission.enqueue_raw_event({"a": 1}, "github", "push")
        [item] = await backend.pull(QueueName.RAW_EVENTS.value, 1)
        assert item.item_id == item_id
        assert item.status is WorkStatus.QUEUED
        assert (item.source, item.event_type, item.payload) == ("github", "push", {"a": 1})

    async def test_any_saturated_queue_rejects_raw_events(self, backend: InMemoryQueueBackend) -> None:
        admission = QueueAdmissionController(backend, _limits(anomaly_detection=1))
        await _fill(backend, QueueName.ANOMALY_DETECTION, 1)
        before = await admission.queue_depths()
        with pytest.raises(QueueBackpressureError) as exc_info:
            await admission.enqueue_raw_event({}, "github")
        assert exc_info.value.queue == QueueName.RAW_EVENTS.value
        assert exc_info.value.saturated == [QueueName.ANOMALY_DETECTION.value]
        assert await admission.queue_depths() == before

    async def test_internal_enqueue_checks_own_queue(self, backend: InMemoryQueueBackend, make_event) -> None:
        admission = QueueAdmissionController(backend, _limits(raw_events=1, metric_calculation=1))
        await _fill(backend, QueueName.RAW_EVENTS, 1)
        event = make_event()
        await admission.enqueue_metric_calculation(event)
        with pytest.raises(QueueBackpressureError):
            await admission.enqueue_metric_calculation(event)
        [item] = await backend.pull(QueueName.METRIC_CALCULATION.value, 5)
        assert item.payload == {"event_id": event.event_id}
        assert item.event_type == "push"

    async def test_anomaly_detection_payload(self, backend: InMemoryQueueBackend, make_metric) -> None:
        admission = QueueAdmissionController(backend, _limits())
        metric = make_metric(metric_id="m-1")
        await admission.enqueue_anomaly_detection(metric)
        [item] = await backend.pull(QueueName.ANOMALY_DETECTION.value, 5)
        assert item.payload == {"metric_id": "m-1"}


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------


class TestInMemoryBackend:
    async def test_fifo_and_limit(self) -> None:
        backend = InMemoryQueueBackend()
        for n in range(3):
            await backend.push(WorkItem(queue="q", payload=n))
        assert [i.payload for i in await backend.pull("q", 2)] == [0, 1]
        assert [i.payload for i in await backend.pull("q", 2)] == [2]

    async def test_delayed_items_count_but_wait(self) -> None:
        backend = InMemoryQueueBackend()
        await backend.push(WorkItem(queue="q", payload="later", available_at=T0 + timedelta(seconds=5)))
        assert await backend.depth("q") == 1
        assert await backend.pull("q", 10, now=T0) == []
        [item] = await backend.pull("q", 10, now=T0 + timedelta(seconds=5))
        assert item.payload == "later"
        assert await backend.depth("q") == 0


# ---------------------------------------------------------------------------
# Retry and workers
# ---------------------------------------------------------------------------


class TestRetryPolicy:
    def test_budget(self) -> None:
        policy = RetryPolicy(max_retries=3)
        assert [policy.should_retry(n) for n in (1, 2, 3, 4)] == [True, True, True, False]

    def test_backoff_is_exponential_and_capped(self) -> None:
        policy = RetryPolicy(base_delay_seconds=1.0, max_delay_seconds=5.0)
        assert [policy.delay(n).total_seconds() for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]


class TestQueueWorker:
    async def test_processes_batch(self, backend: InMemoryQueueBackend) -> None:
        seen: list[object] = []

        async def handler(item: WorkItem) -> None:
            seen.append(item.payload)

        for n in range(3):
            await backend.push(WorkItem(queue="q", payload=n, status=WorkStatus.QUEUED))
        worker = QueueWorker("q", backend, handler, batch_size=2)
        assert await worker.run_batch(T0) == BatchResult(pulled=2, processed=2)
        assert await worker.run_batch(T0) == BatchResult(pulled=1, processed=1)
        assert seen == [0, 1, 2]

    async def test_failure_isolated_to_item(self, backend: InMemoryQueueBackend) -> None:
        async def handler(item: WorkItem) -> None:
            if item.payload == "bad":
                raise RuntimeError("boom")

        for payload in ("ok", "bad", "ok"):
            await backend.push(WorkItem(queue="q", payload=payload, status=WorkStatus.QUEUED))
        worker = QueueWorker("q", backend, handler, batch_size=10)
        result = await worker.run_batch(T0)
        assert (result.processed, result.retried, result.dead) == (2, 1, 0)
        assert await backend.depth("q") == 1

    async def test_retries_then_dead_letters(self, backend: InMemoryQueueBackend) -> None:
        attempts: list[int] = []

        async def handler(item: WorkItem) -> None:
            attempts.append(item.attempts)
            raise ValueError("always fails")

        await backend.push(WorkItem(queue="q", payload=None, status=WorkStatus.QUEUED))
        retry = RetryPolicy(max_retries=2, base_delay_seconds=1.0)
        worker = QueueWorker("q", backend, handler, retry=retry)

        now = T0
        outcomes = []
        for _ in range(3):
            result = await worker.run_batch(now)
            outcomes.append((result.retried, result.dead))
            now += timedelta(seconds=10)

        assert attempts == [1, 2, 3]
        assert outcomes == [(1, 0), (1, 0), (0, 1)]
        [dead] = await backend.dead_letters("q")
        assert dead.status is WorkStatus.DEAD
        assert dead.last_error == "ValueError: always fails"
        assert await backend.depth("q") == 0

    async def test_retry_waits_for_backoff(self, backend: InMemoryQueueBackend) -> None:
        calls = 0

        async def handler(item: WorkItem) -> None:
            nonlocal calls
            calls += 1
            raise RuntimeError("transient")

        await backend.push(WorkItem(queue="q", payload=None, status=WorkStatus.QUEUED))
        worker = QueueWorker("q", backend, handler, retry=RetryPolicy(base_delay_seconds=30.0))
        await worker.run_batch(T0)
        assert (await worker.run_batch(T0 + timedelta(seconds=1))).pulled == 0
        assert calls == 1

    async def test_idle_backoff(self, backend: InMemoryQueueBackend) -> None:
        async def handler(item: WorkItem) -> None:
            return None

        worker = QueueWorker("q", backend, handler, poll_interval=0.5, idle_delay=5.0, max_empty_batches=2)
        first = await worker.run_batch(T0)
        assert worker.next_delay(first) == 0.5
        second = await worker.run_batch(T0)
        assert worker.next_delay(second) == 5.0
        assert worker.empty_batches == 0

    def test_batch_size_validated(self, backend: InMemoryQueueBackend) -> None:
        async def handler(item: WorkItem) -> None:
            return None

        with pytest.raises(ValueError):
            QueueWorker("q", backend, handler, batch_size=0)


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------


class TestQueueMonitor:
    async def test_logs_only_on_change(self, backend: InMemoryQueueBackend) -> None:
        admission = QueueAdmissionController(backend, _limits(raw_events=100))
        monitor = QueueMonitor(admission, change_tolerance=2, silent_reports=3)

        stats, logged = await monitor.report()
        assert logged
        assert stats.depths[QueueName.RAW_EVENTS.value] == 0

        await _fill(backend, QueueName.RAW_EVENTS, 2)
        _, logged = await monitor.report()
        assert not logged

        await _fill(backend, QueueName.RAW_EVENTS, 3)
        _, logged = await monitor.report()
        assert logged

    async def test_backpressure_flip_logged(self, backend: InMemoryQueueBackend) -> None:
        admission = QueueAdmissionController(backend, _limits(anomaly_detection=1))
        monitor = QueueMonitor(admission, change_tolerance=100)
        await monitor.report()
        await _fill(backend, QueueName.ANOMALY_DETECTION, 1)
        stats, logged = await monitor.report()
        assert stats.backpressure
        assert logged

    async def test_periodic_report_when_unchanged(self, backend: InMemoryQueueBackend) -> None:
        monitor = QueueMonitor(QueueAdmissionController(backend, _limits()), silent_reports=2)
        logged = [(await monitor.report())[1] for _ in range(5)]
        assert logged == [True, False, False, True, False]
