from __future__ import annotations

from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request

from pambo.services.listing_store import SqlListingStore
from pambo.services.matchmaking_search import STRATEGY, search_listings
from pambo.utils.observability import get_request_id
from pambo.utils.telemetry import get_telemetry


matchmaking_bp = Blueprint("matchmaking_bp", __name__, url_prefix="/api/matchmaking")


@matchmaking_bp.get("/health")
def matchmaking_health():
    return jsonify({
        "success": True,
        "service": "matchmaking",
        "strategy": STRATEGY,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


@matchmaking_bp.get("/search")
def matchmaking_search():
    """Ranked listing search for one hub, optionally biased towards a county."""
    store = SqlListingStore()
    try:
        result = search_listings(
            store,
            get_telemetry(),
            query=request.args.get("query", ""),
            hub=request.args.get("hub", "marketplace"),
            region=request.args.get("county") or None,
            limit=request.args.get("limit"),
            offset=request.args.get("offset"),
            is_schema_mismatch=store.is_schema_mismatch,
            request_id=get_request_id(),
        )
    except Exception as e:
        current_app.logger.exception("matchmaking_search_failed")
        return jsonify({
            "success": False,
            "error": str(e) or "Failed to rank listings",
        }), 500
    return jsonify(result.to_dict()), 200
