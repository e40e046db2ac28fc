from __future__ import annotations

import os
from dataclasses import dataclass


def env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in ("1", "true", "yes", "on")


def env_int(name: str, default: int, *, minimum: int = 1, maximum: int | None = None) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        value = int(default)
    else:
        try:
            value = int(raw)
        except Exception:
            value = int(default)
    if value < minimum:
        value = minimum
    if maximum is not None and value > maximum:
        value = maximum
    return value


def env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default or "").strip()


def pambo_env() -> str:
    return (env_str("PAMBO_ENV", "dev") or "dev").lower()


def is_production(env: str | None = None) -> bool:
    return (env or pambo_env()) in ("prod", "production")


@dataclass(frozen=True)
class TelemetrySettings:
    queue_max_size: int = 20000
    worker_interval_ms: int = 1000
    worker_batch_size: int = 200
    handler_timeout_ms: int = 0
    max_latency_samples: int = 500
    worker_autostart: bool = False

    @property
    def handler_timeout_seconds(self) -> float | None:
        if self.handler_timeout_ms <= 0:
            return None
        return float(self.handler_timeout_ms) / 1000.0

    @classmethod
    def from_env(cls) -> "TelemetrySettings":
        return cls(
            queue_max_size=env_int("EVENT_QUEUE_MAX_SIZE", 20000, minimum=1, maximum=1_000_000),
            worker_interval_ms=env_int("EVENT_WORKER_INTERVAL_MS", 1000, minimum=10, maximum=600_000),
            worker_batch_size=env_int("EVENT_WORKER_BATCH_SIZE", 200, minimum=1, maximum=100_000),
            handler_timeout_ms=env_int("EVENT_HANDLER_TIMEOUT_MS", 0, minimum=0, maximum=600_000),
            max_latency_samples=env_int("METRICS_MAX_LATENCY_SAMPLES", 500, minimum=1, maximum=100_000),
            worker_autostart=env_bool("EVENT_WORKER_AUTOSTART", False),
        )
