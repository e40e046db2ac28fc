from __future__ import annotations

import math
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping


DEFAULT_MAX_LATENCY_SAMPLES = 500

Labels = Mapping[str, Any]


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _label_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_metric_key(name: str, labels: Labels | None = None) -> str:
    """Series key: ``name`` or ``name{a=1,b=2}`` with label keys sorted."""
    if not labels:
        return name
    rendered = ",".join(f"{key}={_label_value(labels[key])}" for key in sorted(labels))
    return f"{name}{{{rendered}}}"


def _require_finite(value, *, what: str) -> None:
    try:
        finite = math.isfinite(float(value))
    except (TypeError, ValueError):
        finite = False
    if not finite:
        raise ValueError(f"{what} must be a finite number, got {value!r}")


def _percentile(sorted_samples: list[float], fraction: float) -> float:
    if not sorted_samples:
        return 0
    index = int(math.floor(len(sorted_samples) * fraction))
    return sorted_samples[min(index, len(sorted_samples) - 1)]


@dataclass(frozen=True)
class LatencySummary:
    key: str
    count: int
    avg_ms: float
    p95_ms: float
    p99_ms: float
    max_ms: float

    @classmethod
    def from_samples(cls, key: str, samples) -> "LatencySummary":
        ordered = sorted(samples)
        count = len(ordered)
        if not count:
            return cls(key=key, count=0, avg_ms=0, p95_ms=0, p99_ms=0, max_ms=0)
        return cls(
            key=key,
            count=count,
            avg_ms=round(sum(ordered) / count, 2),
            p95_ms=_percentile(ordered, 0.95),
            p99_ms=_percentile(ordered, 0.99),
            max_ms=ordered[-1],
        )

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "count": int(self.count),
            "avg_ms": self.avg_ms,
            "p95_ms": self.p95_ms,
            "p99_ms": self.p99_ms,
            "max_ms": self.max_ms,
        }


@dataclass(frozen=True)
class MetricsSnapshot:
    boot_timestamp: str
    counters: Mapping[str, float]
    latencies: tuple[LatencySummary, ...]

    def latency(self, key: str) -> LatencySummary | None:
        for entry in self.latencies:
            if entry.key == key:
                return entry
        return None

    def to_dict(self) -> dict:
        return {
            "boot_timestamp": self.boot_timestamp,
            "counters": [{"key": key, "value": value} for key, value in self.counters.items()],
            "latencies": [entry.to_dict() for entry in self.latencies],
        }


class MetricsAggregator:
    """In-process counters and latency samples.

    Counters accept negative increments so they double as gauges (queue depth).
    Latency series keep only the most recent ``max_latency_samples`` values.
    All operations are guarded by one lock; none of them perform I/O.
    """

    def __init__(self, *, max_latency_samples: int = DEFAULT_MAX_LATENCY_SAMPLES):
        self.max_latency_samples = max(1, int(max_latency_samples))
        self._lock = threading.Lock()
        self._counters: dict[str, float] = {}
        self._latencies: dict[str, deque] = {}
        self._boot_timestamp = _utcnow_iso()

    @property
    def boot_timestamp(self) -> str:
        return self._boot_timestamp

    def increment(self, name: str, labels: Labels | None = None, by: float = 1) -> None:
        _require_finite(by, what="increment")
        key = build_metric_key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + by

    def record_latency(self, name: str, value_ms: float, labels: Labels | None = None) -> None:
        _require_finite(value_ms, what="latency")
        key = build_metric_key(name, labels)
        with self._lock:
            samples = self._latencies.get(key)
            if samples is None:
                samples = deque(maxlen=self.max_latency_samples)
                self._latencies[key] = samples
            samples.append(value_ms)

    def counter(self, name: str, labels: Labels | None = None) -> float:
        key = build_metric_key(name, labels)
        with self._lock:
            return self._counters.get(key, 0)

    def latency_samples(self, name: str, labels: Labels | None = None) -> list[float]:
        key = build_metric_key(name, labels)
        with self._lock:
            return list(self._latencies.get(key, ()))

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            counters = dict(self._counters)
            series = [(key, list(samples)) for key, samples in self._latencies.items()]
            boot = self._boot_timestamp
        return MetricsSnapshot(
            boot_timestamp=boot,
            counters=MappingProxyType(counters),
            latencies=tuple(LatencySummary.from_samples(key, samples) for key, samples in series),
        )

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._latencies.clear()
            self._boot_timestamp = _utcnow_iso()


__all__ = [
    "DEFAULT_MAX_LATENCY_SAMPLES",
    "LatencySummary",
    "MetricsAggregator",
    "MetricsSnapshot",
    "build_metric_key",
]
