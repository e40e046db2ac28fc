from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pambo.utils.event_queue import PlatformEvent

logger = logging.getLogger(__name__)


def _safe_value(value: Any):
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _safe_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_safe_value(v) for v in value]
    try:
        return str(value)
    except Exception:
        return "<unserializable>"


def safe_payload(data: Any) -> dict:
    return _safe_value(data if isinstance(data, dict) else {"value": data})


def log_event(
    telemetry,
    event_type: str,
    *,
    source: str,
    payload: dict | None = None,
    request_id: str | None = None,
) -> PlatformEvent | None:
    """Best-effort event emitter.

    Never raises to caller; telemetry must not break the request path.
    """
    try:
        body = safe_payload(payload or {})
        if request_id:
            body.setdefault("request_id", str(request_id)[:80])
        return telemetry.events.emit(
            (event_type or "unknown").strip()[:80],
            (source or "unknown").strip()[:120],
            body,
        )
    except Exception as e:
        logger.warning("event_emit_failed type=%s err=%s", event_type, e)
        return None
