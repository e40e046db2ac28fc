from __future__ import annotations

import asyncio
import logging
import unittest

from pambo.utils.event_queue import EventQueue, PlatformEvent
from pambo.utils.metrics import MetricsAggregator


class EventQueueTestCase(unittest.TestCase):
    def setUp(self):
        self.metrics = MetricsAggregator()
        self.queue = EventQueue(self.metrics, max_size=3, logger=logging.getLogger("tests.event_queue"))

    def _depth_gauge(self):
        return self.metrics.counter("event.queue.depth", {"metric": "current"})

    def test_emit_builds_event_and_counts(self):
        event = self.queue.emit("SEARCH", "api.matchmaking.search", {"query": "maize"})
        self.assertIsInstance(event, PlatformEvent)
        self.assertEqual(event.type, "SEARCH")
        self.assertEqual(event.source, "api.matchmaking.search")
        self.assertEqual(event.payload, {"query": "maize"})
        self.assertTrue(event.id)
        self.assertIn("T", event.timestamp)
        self.assertEqual(self.queue.depth, 1)
        self.assertEqual(self.metrics.counter("event.emitted", {"type": "SEARCH", "source": "api.matchmaking.search"}), 1)
        self.assertEqual(self._depth_gauge(), 1)

    def test_event_ids_are_unique(self):
        ids = {self.queue.emit("X", "test").id for _ in range(3)}
        self.assertEqual(len(ids), 3)

    def test_emit_does_not_run_handlers(self):
        calls = []
        self.queue.register_handler("X", calls.append)
        self.queue.emit("X", "test")
        self.assertEqual(calls, [])

    def test_full_queue_evicts_oldest_first(self):
        emitted = [self.queue.emit("X", "test", {"n": n}) for n in range(4)]
        self.assertEqual(self.queue.depth, 3)
        self.assertEqual(self.metrics.counter("event.queue.dropped", {"reason": "max_queue_size"}), 1)
        self.assertEqual(self._depth_gauge(), 3)

        seen = []
        self.queue.register_handler("X", lambda event: seen.append(event.id))
        asyncio.run(self.queue.process_batch(10))
        self.assertEqual(seen, [event.id for event in emitted[1:]])

    def test_two_handlers_each_run_once_per_event(self):
        first, second = [], []
        self.queue.register_handler("X", first.append)
        self.queue.register_handler("X", second.append)
        self.queue.emit("X", "test")

        processed = asyncio.run(self.queue.process_batch(1))
        self.assertEqual(processed, 1)
        self.assertEqual(len(first), 1)
        self.assertEqual(len(second), 1)

        processed = asyncio.run(self.queue.process_batch(1))
        self.assertEqual(processed, 0)
        self.assertEqual(len(first), 1)
        self.assertEqual(len(second), 1)

    def test_handlers_run_in_registration_order(self):
        order = []
        self.queue.register_handler("X", lambda event: order.append("a"))
        self.queue.register_handler("X", lambda event: order.append("b"))
        self.queue.register_handler("X", lambda event: order.append("c"))
        self.queue.emit("X", "test")
        asyncio.run(self.queue.process_batch())
        self.assertEqual(order, ["a", "b", "c"])

    def test_failing_handler_is_isolated(self):
        calls = []

        def _boom(event):
            raise RuntimeError("handler exploded")

        async def _async_boom(event):
            raise ValueError("rejected")

        self.queue.register_handler("X", _boom)
        self.queue.register_handler("X", lambda event: calls.append(("sync", event.payload["n"])))
        self.queue.register_handler("X", _async_boom)
        self.queue.emit("X", "test", {"n": 1})
        self.queue.emit("X", "test", {"n": 2})

        with self.assertLogs("tests.event_queue", level="WARNING") as captured:
            processed = asyncio.run(self.queue.process_batch(5))

        self.assertEqual(processed, 2)
        self.assertEqual(calls, [("sync", 1), ("sync", 2)])
        self.assertEqual(self.metrics.counter("event.handler.failure", {"type": "X"}), 4)
        self.assertEqual(self.metrics.counter("event.handler.success", {"type": "X"}), 2)
        self.assertTrue(any("event_handler_failed" in line for line in captured.output))

    def test_cancelled_handler_is_isolated(self):
        seen = []

        async def _cancelled(event):
            future = asyncio.get_running_loop().create_future()
            future.cancel()
            await future

        self.queue.register_handler("X", _cancelled)
        self.queue.register_handler("X", lambda event: seen.append(event.payload["n"]))
        self.queue.emit("X", "test", {"n": 1})
        self.queue.emit("X", "test", {"n": 2})

        with self.assertLogs("tests.event_queue", level="WARNING"):
            processed = asyncio.run(self.queue.process_batch(5))

        self.assertEqual(processed, 2)
        self.assertEqual(seen, [1, 2])
        self.assertEqual(self.queue.depth, 0)
        self.assertEqual(self._depth_gauge(), 0)
        self.assertEqual(self.metrics.counter("event.handler.failure", {"type": "X"}), 2)
        self.assertEqual(self.metrics.counter("event.handler.success", {"type": "X"}), 2)

    def test_cancelling_the_batch_propagates_and_keeps_gauge_in_sync(self):
        started = []

        async def _slow(event):
            started.append(event.id)
            await asyncio.sleep(5)

        self.queue.register_handler("X", _slow)
        self.queue.emit("X", "test")
        self.queue.emit("X", "test")

        async def _scenario():
            task = asyncio.create_task(self.queue.process_batch(5))
            while not started:
                await asyncio.sleep(0)
            task.cancel()
            with self.assertRaises(asyncio.CancelledError):
                await task

        asyncio.run(_scenario())
        self.assertEqual(len(started), 1)
        self.assertEqual(self.queue.depth, 0)
        self.assertEqual(self._depth_gauge(), 0)
        self.assertEqual(self.metrics.counter("event.handler.failure", {"type": "X"}), 0)

    def test_async_handlers_are_awaited(self):
        seen = []

        async def _handler(event):
            await asyncio.sleep(0)
            seen.append(event.type)

        self.queue.register_handler("Y", _handler)
        self.queue.emit("Y", "test")
        asyncio.run(self.queue.process_batch())
        self.assertEqual(seen, ["Y"])
        self.assertEqual(self.metrics.counter("event.handler.success", {"type": "Y"}), 1)
        self.assertEqual(len(self.metrics.latency_samples("event.handler.latency.ms", {"type": "Y"})), 1)

    def test_batch_is_fifo_and_bounded_by_limit(self):
        seen = []
        self.queue.register_handler("X", lambda event: seen.append(event.payload["n"]))
        for n in range(3):
            self.queue.emit("X", "test", {"n": n})

        self.assertEqual(asyncio.run(self.queue.process_batch(2)), 2)
        self.assertEqual(seen, [0, 1])
        self.assertEqual(self.queue.depth, 1)
        self.assertEqual(self._depth_gauge(), 1)
        self.assertEqual(self.metrics.counter("event.batch.processed", {"size": 2}), 1)

    def test_events_without_handlers_are_still_removed(self):
        self.queue.emit("UNHANDLED", "test")
        self.assertEqual(asyncio.run(self.queue.process_batch()), 1)
        self.assertEqual(self.queue.depth, 0)
        self.assertEqual(self._depth_gauge(), 0)

    def test_empty_batch_touches_no_metrics(self):
        before = dict(self.metrics.snapshot().counters)
        self.assertEqual(asyncio.run(self.queue.process_batch()), 0)
        self.assertEqual(dict(self.metrics.snapshot().counters), before)

    def test_unregister_stops_delivery(self):
        calls = []
        registration = self.queue.register_handler("X", calls.append)
        self.assertTrue(registration.active)
        self.assertTrue(registration.unregister())
        self.assertFalse(registration.active)
        self.assertFalse(registration.unregister())

        self.queue.emit("X", "test")
        asyncio.run(self.queue.process_batch())
        self.assertEqual(calls, [])
        self.assertEqual(self.queue.stats()["registered_event_types"], [])

    def test_unregister_removes_only_that_registration(self):
        calls = []
        handler = calls.append
        first = self.queue.register_handler("X", handler)
        self.queue.register_handler("X", handler)
        self.assertTrue(self.queue.unregister_handler(first))
        self.queue.emit("X", "test")
        asyncio.run(self.queue.process_batch())
        self.assertEqual(len(calls), 1)

    def test_handler_timeout_counts_as_failure(self):
        queue = EventQueue(self.metrics, handler_timeout_seconds=0.05, logger=logging.getLogger("tests.event_queue"))
        after = []

        async def _slow(event):
            await asyncio.sleep(5)

        queue.register_handler("SLOW", _slow)
        queue.register_handler("SLOW", lambda event: after.append(event.id))
        queue.emit("SLOW", "test")

        with self.assertLogs("tests.event_queue", level="WARNING"):
            asyncio.run(queue.process_batch())

        self.assertEqual(self.metrics.counter("event.handler.failure", {"type": "SLOW"}), 1)
        self.assertEqual(len(after), 1)

    def test_clear_and_stats(self):
        self.queue.register_handler("X", lambda event: None)
        self.queue.emit("X", "test")
        self.queue.emit("X", "test")
        self.assertEqual(self.queue.stats(), {"depth": 2, "max_size": 3, "registered_event_types": ["X"]})
        self.assertEqual(self.queue.clear(), 2)
        self.assertEqual(self.queue.depth, 0)
        self.assertEqual(self._depth_gauge(), 0)

    def test_register_rejects_non_callables(self):
        with self.assertRaises(TypeError):
            self.queue.register_handler("X", "not callable")  # type: ignore[arg-type]


if __name__ == "__main__":
    unittest.main()
