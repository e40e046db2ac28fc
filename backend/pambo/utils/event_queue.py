from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pambo.utils.metrics import MetricsAggregator


DEFAULT_MAX_QUEUE_SIZE = 20000
DEFAULT_BATCH_LIMIT = 100


@dataclass(frozen=True)
class PlatformEvent:
    id: str
    type: str
    source: str
    timestamp: str
    payload: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "timestamp": self.timestamp,
            "payload": dict(self.payload or {}),
        }


EventHandler = Callable[[PlatformEvent], Any]


class HandlerRegistration:
    """Token returned by ``EventQueue.register_handler``."""

    def __init__(self, queue: "EventQueue", event_type: str, handler: EventHandler):
        self._queue = queue
        self.event_type = event_type
        self.handler = handler

    @property
    def handler_name(self) -> str:
        return getattr(self.handler, "__qualname__", None) or repr(self.handler)

    @property
    def active(self) -> bool:
        return self._queue.is_registered(self)

    def unregister(self) -> bool:
        return self._queue.unregister_handler(self)

    def __repr__(self) -> str:
        return f"<HandlerRegistration type={self.event_type!r} handler={self.handler_name}>"


class EventQueue:
    """Bounded in-memory FIFO of platform events with per-type handlers.

    ``emit`` only enqueues; handlers run when ``process_batch`` drains the head of
    the queue. When the queue is full the oldest event is evicted. Handlers for one
    event run in registration order and a failing handler never stops the others.
    """

    def __init__(
        self,
        metrics: MetricsAggregator,
        *,
        max_size: int = DEFAULT_MAX_QUEUE_SIZE,
        handler_timeout_seconds: float | None = None,
        logger: logging.Logger | None = None,
    ):
        self.metrics = metrics
        self.max_size = max(1, int(max_size))
        self.handler_timeout_seconds = handler_timeout_seconds if handler_timeout_seconds else None
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._queue: deque[PlatformEvent] = deque()
        self._handlers: dict[str, list[HandlerRegistration]] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def depth(self) -> int:
        return len(self)

    def emit(self, event_type: str, source: str, payload: dict | None = None) -> PlatformEvent:
        event = PlatformEvent(
            id=uuid.uuid4().hex,
            type=str(event_type),
            source=str(source),
            timestamp=datetime.now(timezone.utc).isoformat(),
            payload=dict(payload or {}),
        )
        dropped = 0
        with self._lock:
            while len(self._queue) >= self.max_size:
                self._queue.popleft()
                dropped += 1
            self._queue.append(event)
        if dropped:
            self.metrics.increment("event.queue.dropped", {"reason": "max_queue_size"}, dropped)
            self.metrics.increment("event.queue.depth", {"metric": "current"}, -dropped)
        self.metrics.increment("event.emitted", {"type": event.type, "source": event.source})
        self.metrics.increment("event.queue.depth", {"metric": "current"}, 1)
        return event

    def register_handler(self, event_type: str, handler: EventHandler) -> HandlerRegistration:
        if not callable(handler):
            raise TypeError("event handler must be callable")
        registration = HandlerRegistration(self, str(event_type), handler)
        with self._lock:
            self._handlers.setdefault(registration.event_type, []).append(registration)
        return registration

    def unregister_handler(self, registration: HandlerRegistration) -> bool:
        with self._lock:
            registered = self._handlers.get(registration.event_type)
            if not registered:
                return False
            for index, candidate in enumerate(registered):
                if candidate is registration:
                    del registered[index]
                    if not registered:
                        self._handlers.pop(registration.event_type, None)
                    return True
        return False

    def is_registered(self, registration: HandlerRegistration) -> bool:
        with self._lock:
            return any(candidate is registration for candidate in self._handlers.get(registration.event_type, ()))

    def handlers_for(self, event_type: str) -> list[HandlerRegistration]:
        with self._lock:
            return list(self._handlers.get(event_type, ()))

    def _take(self, limit: int) -> list[PlatformEvent]:
        with self._lock:
            count = min(max(0, int(limit)), len(self._queue))
            return [self._queue.popleft() for _ in range(count)]

    async def process_batch(self, limit: int = DEFAULT_BATCH_LIMIT) -> int:
        batch = self._take(limit)
        if not batch:
            return 0

        self.metrics.increment("event.batch.processed", {"size": len(batch)})
        try:
            for event in batch:
                for registration in self.handlers_for(event.type):
                    await self._invoke(registration, event)
        finally:
            # Taken events leave the queue even when the batch itself is cancelled.
            self.metrics.increment("event.queue.depth", {"metric": "current"}, -len(batch))
        return len(batch)

    async def _invoke(self, registration: HandlerRegistration, event: PlatformEvent) -> bool:
        labels = {"type": event.type}
        started = time.perf_counter()
        try:
            result = registration.handler(event)
            if inspect.isawaitable(result):
                if self.handler_timeout_seconds is not None:
                    await asyncio.wait_for(result, timeout=self.handler_timeout_seconds)
                else:
                    await result
        except asyncio.CancelledError as exc:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            self._record_failure(registration, event, exc)
            return False
        except Exception as exc:
            self._record_failure(registration, event, exc)
            return False
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            self.metrics.record_latency("event.handler.latency.ms", round(elapsed_ms, 3), labels)
        self.metrics.increment("event.handler.success", labels)
        return True

    def _record_failure(self, registration: HandlerRegistration, event: PlatformEvent, exc: BaseException) -> None:
        self.metrics.increment("event.handler.failure", {"type": event.type})
        self._logger.warning(
            "event_handler_failed type=%s handler=%s event_id=%s err=%r",
            event.type,
            registration.handler_name,
            event.id,
            exc,
        )

    def clear(self) -> int:
        with self._lock:
            count = len(self._queue)
            self._queue.clear()
        if count:
            self.metrics.increment("event.queue.depth", {"metric": "current"}, -count)
        return count

    def stats(self) -> dict:
        with self._lock:
            return {
                "depth": len(self._queue),
                "max_size": int(self.max_size),
                "registered_event_types": list(self._handlers.keys()),
            }


class EventQueueWorker:
    """Interval driver that drains an ``EventQueue`` from an APScheduler job.

    The job runs on a single-thread executor with ``max_instances=1``, so at most
    one batch is in flight. ``stop`` halts scheduling and waits for an in-flight
    batch to finish; it never cancels one. Only one worker should drive a given
    queue.
    """

    JOB_ID = "event_queue_drain"

    def __init__(
        self,
        queue: EventQueue,
        *,
        interval_ms: int = 1000,
        batch_size: int = DEFAULT_BATCH_LIMIT,
        logger: logging.Logger | None = None,
    ):
        self.queue = queue
        self.interval_ms = max(1, int(interval_ms))
        self.batch_size = max(1, int(batch_size))
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._scheduler: BackgroundScheduler | None = None
        self._state_lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()

    @property
    def scheduled(self) -> bool:
        scheduler = self._scheduler
        return bool(scheduler is not None and scheduler.running)

    @property
    def busy(self) -> bool:
        return not self._idle.is_set()

    @property
    def running(self) -> bool:
        return self.scheduled or self.busy

    def start(self) -> bool:
        with self._state_lock:
            if self.running:
                return False
            # Schedulers cannot be restarted after shutdown.
            scheduler = BackgroundScheduler(
                executors={"default": ThreadPoolExecutor(max_workers=1)},
                job_defaults={"coalesce": True, "max_instances": 1},
                daemon=True,
            )
            scheduler.add_job(
                self._tick,
                IntervalTrigger(seconds=self.interval_ms / 1000.0),
                id=self.JOB_ID,
                name="Drain event queue",
                replace_existing=True,
            )
            scheduler.start()
            self._scheduler = scheduler
        self._logger.info(
            "event_worker_started interval_ms=%s batch_size=%s", self.interval_ms, self.batch_size
        )
        return True

    def stop(self, timeout: float | None = None) -> bool:
        """Stop scheduling batches. Returns False if a batch is still in flight."""
        with self._state_lock:
            scheduler = self._scheduler
            if scheduler is not None and scheduler.running:
                scheduler.shutdown(wait=timeout is None)
        idle = self._idle.wait(timeout)
        self._logger.info("event_worker_stopped depth=%s in_flight=%s", self.queue.depth, not idle)
        return idle

    def run_once(self) -> int:
        return asyncio.run(self.queue.process_batch(self.batch_size))

    def _tick(self) -> None:
        self._idle.clear()
        if not self.scheduled:
            self._idle.set()
            return
        try:
            self.run_once()
        except (Exception, asyncio.CancelledError):
            self._logger.exception("event_worker_batch_failed")
        finally:
            self._idle.set()


def start_event_queue_worker(
    queue: EventQueue,
    interval_ms: int = 1000,
    batch_size: int = DEFAULT_BATCH_LIMIT,
) -> Callable[..., bool]:
    worker = EventQueueWorker(queue, interval_ms=interval_ms, batch_size=batch_size)
    worker.start()
    return worker.stop


__all__ = [
    "DEFAULT_BATCH_LIMIT",
    "DEFAULT_MAX_QUEUE_SIZE",
    "EventHandler",
    "EventQueue",
    "EventQueueWorker",
    "HandlerRegistration",
    "PlatformEvent",
    "start_event_queue_worker",
]
