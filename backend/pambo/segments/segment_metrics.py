from __future__ import annotations

import hmac
import os

from flask import Blueprint, jsonify, request

from pambo.utils.telemetry import get_telemetry


metrics_bp = Blueprint("metrics_bp", __name__, url_prefix="/api")


def _metrics_token() -> str:
    return (os.getenv("METRICS_TOKEN") or "").strip()


@metrics_bp.get("/metrics")
def metrics_snapshot():
    expected = _metrics_token()
    if expected:
        provided = (request.headers.get("X-Metrics-Token") or request.args.get("token") or "").strip()
        if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
            return jsonify({"success": False, "error": "Unauthorized metrics access"}), 401

    telemetry = get_telemetry()
    return jsonify({
        "success": True,
        "metrics": telemetry.metrics.snapshot().to_dict(),
        "event_queue": telemetry.events.stats(),
    })
