from __future__ import annotations

import logging

from flask import current_app

from pambo.utils.env import TelemetrySettings
from pambo.utils.event_queue import EventQueue, EventQueueWorker
from pambo.utils.metrics import MetricsAggregator


EXTENSION_KEY = "pambo.telemetry"


class TelemetryError(RuntimeError):
    pass


class Telemetry:
    """Owns one metrics aggregator, one event queue and at most one worker."""

    def __init__(
        self,
        metrics: MetricsAggregator,
        events: EventQueue,
        *,
        settings: TelemetrySettings | None = None,
        logger: logging.Logger | None = None,
    ):
        self.metrics = metrics
        self.events = events
        self.settings = settings or TelemetrySettings()
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._worker: EventQueueWorker | None = None
        self._closed = False

    @classmethod
    def create(cls, settings: TelemetrySettings | None = None, *, logger: logging.Logger | None = None) -> "Telemetry":
        resolved = settings or TelemetrySettings.from_env()
        metrics = MetricsAggregator(max_latency_samples=resolved.max_latency_samples)
        events = EventQueue(
            metrics,
            max_size=resolved.queue_max_size,
            handler_timeout_seconds=resolved.handler_timeout_seconds,
            logger=logger,
        )
        return cls(metrics, events, settings=resolved, logger=logger)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def worker(self) -> EventQueueWorker | None:
        return self._worker

    def start_worker(self, *, interval_ms: int | None = None, batch_size: int | None = None) -> EventQueueWorker:
        if self._closed:
            raise TelemetryError("telemetry has been shut down")
        if self._worker is not None and self._worker.running:
            raise TelemetryError("an event worker is already driving this queue")
        self._worker = EventQueueWorker(
            self.events,
            interval_ms=interval_ms or self.settings.worker_interval_ms,
            batch_size=batch_size or self.settings.worker_batch_size,
            logger=self._logger,
        )
        self._worker.start()
        return self._worker

    def stop_worker(self, timeout: float | None = None) -> bool:
        """Stop the worker. Returns False while a batch is still in flight.

        The worker is kept as ``self.worker`` until its batch finishes, so no
        second driver can be started on the queue in the meantime.
        """
        worker = self._worker
        if worker is None:
            return True
        if not worker.stop(timeout):
            self._logger.warning("event_worker_stop_timeout depth=%s", self.events.depth)
            return False
        self._worker = None
        return True

    def shutdown(self, *, drain: bool = False, timeout: float | None = 5.0) -> int:
        """Stop the worker and discard queued events.

        With ``drain=True`` one final batch of everything still queued is processed
        before the queue is cleared, unless the worker's last batch is still running.
        Returns the number of events discarded.
        """
        if self._closed:
            return 0
        stopped = self.stop_worker(timeout)
        if drain and self.events.depth:
            if stopped:
                EventQueueWorker(self.events, batch_size=self.events.depth, logger=self._logger).run_once()
            else:
                self._logger.warning("telemetry_drain_skipped reason=batch_in_flight")
        discarded = self.events.clear()
        self._closed = True
        self._logger.info("telemetry_shutdown discarded=%s", discarded)
        return discarded

    def init_app(self, app) -> None:
        app.extensions[EXTENSION_KEY] = self


def get_telemetry(app=None) -> Telemetry:
    target = app or current_app
    telemetry = target.extensions.get(EXTENSION_KEY)
    if telemetry is None:
        raise TelemetryError("telemetry is not configured for this app")
    return telemetry
