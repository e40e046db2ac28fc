from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping


HOURS_IN_DAY = 24
# Age reported for missing or unparseable dates.
STALE_AGE_HOURS = 999.0

TITLE_CONTAINS_POINTS = 25
DESCRIPTION_CONTAINS_POINTS = 12
CATEGORY_CONTAINS_POINTS = 10
TITLE_PREFIX_POINTS = 8
REGION_MATCH_POINTS = 20
VERIFIED_SELLER_POINTS = 20
ACTIVE_SELLER_POINTS = 10


@dataclass(frozen=True)
class MatchContext:
    query: str = ""
    region: str | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_text(value: Any) -> str:
    return str(value or "").lower().strip()


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    raw = str(value).strip()
    if not raw:
        return None
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    try:
        return _as_utc(datetime.fromisoformat(raw))
    except ValueError:
        return None


def age_in_hours(value: Any, *, now: datetime | None = None) -> float:
    parsed = _parse_datetime(value)
    if parsed is None:
        return STALE_AGE_HOURS
    reference = _as_utc(now) if now is not None else _utcnow()
    return (reference - parsed).total_seconds() / 3600.0


def recency_score(created_at: Any, *, now: datetime | None = None) -> tuple[int, str]:
    hours = age_in_hours(created_at, now=now)
    if hours <= HOURS_IN_DAY:
        return 30, "NEW"
    if hours <= HOURS_IN_DAY * 3:
        return 20, "RECENT"
    if hours <= HOURS_IN_DAY * 7:
        return 12, "THIS_WEEK"
    return 4, "STALE"


def text_relevance_score(listing: Mapping[str, Any], query: str | None) -> tuple[int, list[str]]:
    q = _normalize_text(query)
    if not q:
        return 0, []

    title = _normalize_text(listing.get("title"))
    description = _normalize_text(listing.get("description"))
    category = _normalize_text(listing.get("category"))

    score = 0
    reasons: list[str] = []
    if q in title:
        score += TITLE_CONTAINS_POINTS
        reasons.append("TITLE_MATCH")
    if q in description:
        score += DESCRIPTION_CONTAINS_POINTS
        reasons.append("DESCRIPTION_MATCH")
    if q in category:
        score += CATEGORY_CONTAINS_POINTS
        reasons.append("CATEGORY_MATCH")
    if title.startswith(q):
        score += TITLE_PREFIX_POINTS
        reasons.append("TITLE_PREFIX")
    return score, reasons


def region_score(listing_region: Any, query_region: str | None) -> int:
    wanted = _normalize_text(query_region)
    if not wanted:
        return 0
    return REGION_MATCH_POINTS if _normalize_text(listing_region) == wanted else 0


def seller_trust_score(seller: Mapping[str, Any] | None, *, now: datetime | None = None) -> tuple[int, list[str]]:
    if not seller:
        return 0, []

    score = 0
    reasons: list[str] = []
    if bool(seller.get("verified")):
        score += VERIFIED_SELLER_POINTS
        reasons.append("VERIFIED_SELLER")
    if str(seller.get("account_status") or "") == "active":
        score += ACTIVE_SELLER_POINTS
        reasons.append("ACTIVE_SELLER")

    joined_hours = age_in_hours(seller.get("join_date"), now=now)
    if joined_hours < HOURS_IN_DAY * 30:
        score += 2
    elif joined_hours < HOURS_IN_DAY * 180:
        score += 6
    else:
        score += 10
    reasons.append("SELLER_TENURE")
    return score, reasons


def engagement_score(views: Any) -> int:
    if isinstance(views, bool):
        value = float(views)
    else:
        try:
            value = float(views or 0)
        except (TypeError, ValueError):
            return 0
    if not math.isfinite(value) or value <= 0:
        return 0
    if value < 20:
        return 3
    if value < 100:
        return 8
    if value < 500:
        return 14
    return 18


def score_listing(
    listing: Mapping[str, Any],
    seller: Mapping[str, Any] | None,
    context: MatchContext,
    *,
    now: datetime | None = None,
) -> tuple[int, list[str]]:
    score = 0
    reasons: list[str] = []

    text_points, text_reasons = text_relevance_score(listing, context.query)
    score += text_points
    reasons.extend(text_reasons)

    region_points = region_score(listing.get("county"), context.region)
    if region_points:
        score += region_points
        reasons.append("REGION_MATCH")

    trust_points, trust_reasons = seller_trust_score(seller, now=now)
    score += trust_points
    reasons.extend(trust_reasons)

    recency_points, recency_reason = recency_score(
        listing.get("created_at") or listing.get("updated_at"),
        now=now,
    )
    score += recency_points
    reasons.append(recency_reason)

    engagement_points = engagement_score(listing.get("views"))
    if engagement_points:
        score += engagement_points
        reasons.append("ENGAGEMENT")

    return int(score), reasons


def rank_listings(
    listings: Iterable[Mapping[str, Any]],
    sellers: Iterable[Mapping[str, Any]],
    context: MatchContext,
    *,
    now: datetime | None = None,
) -> list[dict]:
    """Score every listing and return new records sorted by ``match_score``.

    The sort is stable, so listings with equal scores keep their input order.
    ``now`` pins the reference time for the recency and seller tenure signals.
    """
    reference = now or _utcnow()
    seller_map: dict[str, Mapping[str, Any]] = {}
    for seller in sellers or ():
        seller_map[str(seller.get("id"))] = seller

    ranked: list[dict] = []
    for listing in listings or ():
        seller_id = listing.get("seller_id")
        seller = seller_map.get(str(seller_id)) if seller_id else None
        score, reasons = score_listing(listing, seller, context, now=reference)
        ranked.append({**listing, "match_score": score, "match_reasons": reasons})

    ranked.sort(key=lambda item: item["match_score"], reverse=True)
    return ranked
