from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Sequence

from pambo.services.matchmaking_service import MatchContext, rank_listings
from pambo.utils.events import log_event


STRATEGY = "kenya-1m-scale-v1"
SEARCH_EVENT_TYPE = "SEARCH"
SEARCH_EVENT_SOURCE = "api.matchmaking.search"
ACTIVE_STATUS = "active"
DEFAULT_LIMIT = 20
MAX_LIMIT = 100
MIN_WINDOW = 30

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ListingQueryVariant:
    apply_region: bool
    order_column: str | None = None

    @property
    def label(self) -> str:
        region = "region" if self.apply_region else "any_region"
        return f"{region}:{self.order_column or 'unordered'}"


# Tried in order; later variants only run after a schema mismatch.
DEFAULT_QUERY_VARIANTS: tuple[ListingQueryVariant, ...] = (
    ListingQueryVariant(apply_region=True, order_column="createdAt"),
    ListingQueryVariant(apply_region=False, order_column="createdAt"),
    ListingQueryVariant(apply_region=True, order_column="created_at"),
    ListingQueryVariant(apply_region=False, order_column="created_at"),
    ListingQueryVariant(apply_region=True),
    ListingQueryVariant(apply_region=False),
)


def is_missing_column_error(error: BaseException) -> bool:
    message = str(error or "").lower()
    return "column" in message and "does not exist" in message


@dataclass(frozen=True)
class SearchResult:
    query: str
    hub: str
    region: str | None
    limit: int
    offset: int
    listings: list[dict]
    variant: ListingQueryVariant
    strategy: str = STRATEGY

    @property
    def total(self) -> int:
        return len(self.listings)

    def to_dict(self) -> dict:
        return {
            "success": True,
            "strategy": self.strategy,
            "hub": self.hub,
            "county": self.region,
            "query": self.query,
            "total": self.total,
            "listings": self.listings,
        }


def clamp_limit(raw: Any, default: int = DEFAULT_LIMIT) -> int:
    try:
        value = int(raw if raw not in (None, "") else default)
    except (TypeError, ValueError):
        value = int(default)
    return max(1, min(value, MAX_LIMIT))


def clamp_offset(raw: Any) -> int:
    try:
        value = int(raw or 0)
    except (TypeError, ValueError):
        value = 0
    return max(0, value)


def candidate_window(limit: int) -> int:
    return max(int(limit) * 3, MIN_WINDOW)


def fetch_candidates(
    store,
    *,
    hub: str,
    region: str | None,
    query: str,
    start: int,
    end: int,
    variants: Sequence[ListingQueryVariant] = DEFAULT_QUERY_VARIANTS,
    is_schema_mismatch: Callable[[BaseException], bool] = is_missing_column_error,
) -> tuple[list[dict], ListingQueryVariant]:
    """Run the query variants in order until one succeeds.

    Only errors accepted by ``is_schema_mismatch`` move on to the next variant;
    anything else is raised unchanged. If every variant hits a schema mismatch
    the last error is raised.
    """
    if not variants:
        raise ValueError("at least one query variant is required")
    last_error: BaseException | None = None
    for variant in variants:
        try:
            rows = store.fetch_listings(
                hub=hub,
                status=ACTIVE_STATUS,
                region=region,
                query=query,
                start=start,
                end=end,
                variant=variant,
            )
        except Exception as exc:
            if not is_schema_mismatch(exc):
                raise
            logger.info("search_variant_schema_mismatch variant=%s err=%s", variant.label, exc)
            last_error = exc
            continue
        return list(rows or []), variant
    raise last_error


def _unique_seller_ids(listings: list[dict]) -> list:
    seen: set[str] = set()
    ids = []
    for item in listings:
        seller_id = item.get("seller_id")
        if not seller_id or str(seller_id) in seen:
            continue
        seen.add(str(seller_id))
        ids.append(seller_id)
    return ids


def search_listings(
    store,
    telemetry,
    *,
    query: str = "",
    hub: str = "marketplace",
    region: str | None = None,
    limit: Any = DEFAULT_LIMIT,
    offset: Any = 0,
    is_schema_mismatch: Callable[[BaseException], bool] = is_missing_column_error,
    variants: Sequence[ListingQueryVariant] = DEFAULT_QUERY_VARIANTS,
    now: datetime | None = None,
    request_id: str | None = None,
) -> SearchResult:
    search_text = (query or "").strip()
    safe_hub = (hub or "marketplace").strip() or "marketplace"
    safe_region = (region or "").strip() or None
    safe_limit = clamp_limit(limit)
    safe_offset = clamp_offset(offset)
    window_end = safe_offset + candidate_window(safe_limit) - 1

    try:
        listings, variant = fetch_candidates(
            store,
            hub=safe_hub,
            region=safe_region,
            query=search_text,
            start=safe_offset,
            end=window_end,
            variants=variants,
            is_schema_mismatch=is_schema_mismatch,
        )
        seller_ids = _unique_seller_ids(listings)
        sellers = list(store.fetch_sellers(seller_ids) or []) if seller_ids else []
        ranked = rank_listings(
            listings,
            sellers,
            MatchContext(query=search_text, region=safe_region),
            now=now,
        )[:safe_limit]
    except Exception:
        telemetry.metrics.increment("search.errors", {"hub": safe_hub})
        raise

    telemetry.metrics.increment("search.requests", {"hub": safe_hub})
    log_event(
        telemetry,
        SEARCH_EVENT_TYPE,
        source=SEARCH_EVENT_SOURCE,
        payload={
            "query": search_text,
            "hub": safe_hub,
            "county": safe_region,
            "limit": safe_limit,
            "offset": safe_offset,
            "result_count": len(ranked),
            "variant": variant.label,
        },
        request_id=request_id,
    )
    return SearchResult(
        query=search_text,
        hub=safe_hub,
        region=safe_region,
        limit=safe_limit,
        offset=safe_offset,
        listings=ranked,
        variant=variant,
    )
