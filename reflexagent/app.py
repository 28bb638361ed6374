"""Application bootstrap for ReflexAgent.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → storage → cache → queue → classifier
              → notifications → detector → pipeline workers
              → aggregation job → queue monitor

Every component receives its collaborators through its constructor; there
is no process-wide registry. Shutdown stops components in reverse order and
each stop is isolated so one failing teardown does not block the rest.
"""

from __future__ import annotations

import asyncio
import signal
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from reflexagent import __version__
from reflexagent.aggregation import AggregationJob, MetricAggregator
from reflexagent.classifiers import MetricClassifier
from reflexagent.config import load_config
from reflexagent.detection import AnomalyDetector
from reflexagent.ingestion.parser import InvalidPayloadError, decode_payload
from reflexagent.models.config import ReflexAgentConfig
from reflexagent.models.metrics import Granularity
from reflexagent.notifications import NotificationDispatcher, build_notification_dispatcher
from reflexagent.observability.logging import get_logger, setup_logging
from reflexagent.observability.metrics import events_rejected_total
from reflexagent.pipeline import Pipeline
from reflexagent.queueing import (
    InMemoryQueueBackend,
    QueueAdmissionController,
    QueueBackpressureError,
    QueueMonitor,
    QueueName,
    QueueWorker,
    RetryPolicy,
)
from reflexagent.storage import InMemoryMetricCache, build_storage

if TYPE_CHECKING:
    import structlog

    from reflexagent.ports import StoragePort

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class ReflexAgentApp:
    """Application root. Owns every component and coordinates their lifecycle.

    Args:
        config: Explicit configuration; loaded from the environment when None.
    """

    def __init__(self, config: ReflexAgentConfig | None = None) -> None:
        self.config = config
        self.storage: StoragePort | None = None
        self.cache: InMemoryMetricCache | None = None
        self.queue_backend: InMemoryQueueBackend | None = None
        self.admission: QueueAdmissionController | None = None
        self.classifier: MetricClassifier | None = None
        self.notifications: NotificationDispatcher | None = None
        self.detector: AnomalyDetector | None = None
        self.pipeline: Pipeline | None = None
        self.workers: dict[str, QueueWorker] = {}
        self.aggregation_job: AggregationJob | None = None
        self.monitor: QueueMonitor | None = None

        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self, background: bool = True) -> None:
        """Start all components in dependency order.

        With ``background=False`` the workers, aggregation job and monitor are
        built but not scheduled, so callers can drive them step by step.

        Raises _ComponentError if a mandatory component cannot start.
        """
        # --- 1. Configuration -------------------------------------------
        if self.config is None:
            self.config = load_config()

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level, self.config.log.fmt)
        self._log = get_logger("app")
        self._log.info("reflexagent starting", version=__version__)

        # --- 3. Storage and cache ---------------------------------------
        self._start_storage()

        # --- 4. Queues ---------------------------------------------------
        self._start_queues()

        # --- 5. Classification, notifications, detection ----------------
        self._start_detection()

        # --- 6. Pipeline workers, aggregation, monitor ------------------
        self._start_workers(background)
        self._start_aggregation(background)
        self._start_monitor(background)

        self._running = True
        self._log.info(
            "reflexagent started",
            storage=self.config.storage.backend,
            workers=sorted(self.workers),
            notification_channels=self.notifications.channels if self.notifications else [],
        )

    # ------------------------------------------------------------------
    # Component startup helpers
    # ------------------------------------------------------------------

    def _start_storage(self) -> None:
        assert self._log is not None
        assert self.config is not None
        try:
            self.storage = build_storage(self.config.storage)
            self.cache = InMemoryMetricCache(
                ttl_seconds=self.config.cache.ttl_seconds,
                max_entries=self.config.cache.max_entries,
            )
            self._log.info("storage started", backend=self.config.storage.backend)
        except Exception as exc:
            raise _ComponentError("storage", exc) from exc

    def _start_queues(self) -> None:
        assert self._log is not None
        assert self.config is not None
        try:
            self.queue_backend = InMemoryQueueBackend(q.value for q in QueueName)
            self.admission = QueueAdmissionController(self.queue_backend, self.config.queue.max_depths)
            self._log.info("queues started", max_depths=self.admission.max_depths)
        except Exception as exc:
            raise _ComponentError("queues", exc) from exc

    def _start_detection(self) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self.storage is not None
        try:
            self.classifier = MetricClassifier()
        except Exception as exc:
            raise _ComponentError("classifier", exc) from exc

        # Notifications are optional: failure degrades to detection without delivery.
        try:
            self.notifications = build_notification_dispatcher(self.config.notifications)
        except Exception as exc:
            self._log.warning("notifications unavailable", error=str(exc))
            self.notifications = None

        try:
            self.detector = AnomalyDetector(self.storage, self.notifications, self.config.anomaly, cache=self.cache)
        except Exception as exc:
            raise _ComponentError("detector", exc) from exc

    def _start_workers(self, background: bool) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self.storage is not None and self.admission is not None and self.queue_backend is not None
        assert self.classifier is not None and self.detector is not None
        try:
            self.pipeline = Pipeline(self.storage, self.admission, self.classifier, self.detector)
            retry = RetryPolicy(
                max_retries=self.config.retry.max_retries,
                base_delay_seconds=self.config.retry.base_delay_seconds,
                max_delay_seconds=self.config.retry.max_delay_seconds,
            )
            queue_cfg = self.config.queue
            for queue, handler in self.pipeline.handlers().items():
                worker = QueueWorker(
                    queue,
                    self.queue_backend,
                    handler,
                    batch_size=queue_cfg.batch_sizes.get(queue, 10),
                    retry=retry,
                    poll_interval=queue_cfg.poll_interval_seconds,
                    idle_delay=queue_cfg.idle_delay_seconds,
                    max_empty_batches=queue_cfg.max_empty_batches,
                )
                self.workers[queue] = worker
                if background:
                    worker.start()
            self._log.info("pipeline workers started", queues=sorted(self.workers), background=background)
        except Exception as exc:
            raise _ComponentError("workers", exc) from exc

    def _start_aggregation(self, background: bool) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self.storage is not None and self.admission is not None
        try:
            agg_cfg = self.config.aggregation
            self.aggregation_job = AggregationJob(
                self.storage,
                MetricAggregator(self.storage, self.cache),
                self.admission,
                granularities=[Granularity(g) for g in agg_cfg.granularities],
                lookback=timedelta(minutes=agg_cfg.lookback_minutes),
                interval_seconds=agg_cfg.interval_seconds,
            )
            if background:
                self.aggregation_job.start()
            self._log.info("aggregation job started", interval_seconds=agg_cfg.interval_seconds)
        except Exception as exc:
            raise _ComponentError("aggregation", exc) from exc

    def _start_monitor(self, background: bool) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self.admission is not None
        mon_cfg = self.config.monitor
        self.monitor = QueueMonitor(
            self.admission,
            interval_seconds=mon_cfg.interval_seconds,
            change_tolerance=mon_cfg.change_tolerance,
            silent_reports=mon_cfg.silent_reports,
        )
        if background:
            self.monitor.start()

    # ------------------------------------------------------------------
    # Ingestion boundary
    # ------------------------------------------------------------------

    async def ingest(self, payload: Any, source: str, event_type: str | None = None) -> str:
        """Admit one webhook payload.

        Raises:
            InvalidPayloadError:    payload is not a JSON object.
            QueueBackpressureError: a queue is saturated; retry later.
        """
        if self.admission is None:
            raise RuntimeError("ReflexAgentApp.ingest called before start()")
        try:
            decoded = decode_payload(payload)
        except InvalidPayloadError:
            events_rejected_total.labels(reason="invalid_payload").inc()
            raise
        try:
            return await self.admission.enqueue_raw_event(decoded, source, event_type)
        except QueueBackpressureError:
            events_rejected_total.labels(reason="backpressure").inc()
            raise

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("reflexagent shutting down")
        self._running = False

        await self._stop_component("monitor", self.monitor)
        await self._stop_component("aggregation", self.aggregation_job)
        for queue in reversed(list(self.workers)):
            await self._stop_component(f"worker:{queue}", self.workers[queue])
        await self._stop_component("storage", self.storage)

        log.info("reflexagent stopped")

    async def _stop_component(self, name: str, component: object | None) -> None:
        """Call stop() on a component if it has that method, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, "stop", None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component stop timed out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component stop raised an error", component=name, error=str(exc))


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = ReflexAgentApp()
    loop = asyncio.get_running_loop()
    stopped = asyncio.Event()

    def _request_shutdown() -> None:
        stopped.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await app.start()
        await stopped.wait()
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app.running:
            await app.stop()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())
