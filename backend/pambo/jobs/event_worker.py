from __future__ import annotations

from pambo.services.matchmaking_search import SEARCH_EVENT_TYPE
from pambo.utils.event_queue import HandlerRegistration, PlatformEvent
from pambo.utils.telemetry import Telemetry


WORKER_INTERVAL_MS = 1000
WORKER_BATCH_SIZE = 200

LISTING_CREATED_EVENT_TYPE = "LISTING_CREATED"
LISTING_SEARCH_EVENT_TYPE = "LISTING_SEARCH"


def register_default_handlers(telemetry: Telemetry) -> list[HandlerRegistration]:
    metrics = telemetry.metrics

    async def _on_search(event: PlatformEvent) -> None:
        metrics.increment("worker.search.processed")
        try:
            result_count = int(event.payload.get("result_count") or 0)
        except (TypeError, ValueError):
            result_count = 0
        if result_count == 0:
            metrics.increment("worker.search.empty_results", {"hub": event.payload.get("hub") or "unknown"})

    async def _on_listing_created(event: PlatformEvent) -> None:
        metrics.increment("worker.listing_created.processed")

    async def _on_listing_search(event: PlatformEvent) -> None:
        metrics.increment("worker.listing_search.processed")

    events = telemetry.events
    return [
        events.register_handler(SEARCH_EVENT_TYPE, _on_search),
        events.register_handler(LISTING_CREATED_EVENT_TYPE, _on_listing_created),
        events.register_handler(LISTING_SEARCH_EVENT_TYPE, _on_listing_search),
    ]


def start_event_worker(telemetry: Telemetry, *, interval_ms: int | None = None, batch_size: int | None = None):
    return telemetry.start_worker(
        interval_ms=interval_ms or telemetry.settings.worker_interval_ms or WORKER_INTERVAL_MS,
        batch_size=batch_size or telemetry.settings.worker_batch_size or WORKER_BATCH_SIZE,
    )
