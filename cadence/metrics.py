"""
In-process metrics for runs and reply delivery.

Counters and latency summaries are kept in memory and exported as a JSON-able
snapshot; there is no Prometheus or StatsD dependency.  Names may carry a
single label (``replies_delivered_total{kind=block}``) so per-kind delivery
can be told apart without a second registry.

Usage:
    from cadence.metrics import metrics

    metrics.inc("runs_started_total")
    metrics.inc("replies_delivered_total", kind="block")
    metrics.observe("run_duration_seconds", 1.23)
"""

from __future__ import annotations

import threading
import time
from typing import Any, Optional


def _key(name: str, labels: dict[str, str]) -> str:
    if not labels:
        return name
    rendered = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
    return f"{name}{{{rendered}}}"


class _Summary:
    """Count, sum, min and max of observed values."""

    __slots__ = ("count", "total", "low", "high")

    def __init__(self) -> None:
        self.count = 0
        self.total = 0.0
        self.low: Optional[float] = None
        self.high: Optional[float] = None

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.low = value if self.low is None else min(self.low, value)
        self.high = value if self.high is None else max(self.high, value)

    def snapshot(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "sum": round(self.total, 4),
            "avg": round(self.total / self.count, 4) if self.count else 0.0,
            "min": round(self.low, 4) if self.low is not None else 0.0,
            "max": round(self.high, 4) if self.high is not None else 0.0,
        }


class MetricsRegistry:
    """Thread-safe registry of labelled counters and summaries."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = {}
        self._summaries: dict[str, _Summary] = {}
        self._start_time = time.monotonic()

    def inc(self, name: str, value: int = 1, **labels: str) -> None:
        key = _key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + value

    def counter(self, name: str, **labels: str) -> int:
        with self._lock:
            return self._counters.get(_key(name, labels), 0)

    def observe(self, name: str, value: float, **labels: str) -> None:
        key = _key(name, labels)
        with self._lock:
            summary = self._summaries.get(key)
            if summary is None:
                summary = self._summaries[key] = _Summary()
            summary.observe(value)

    def summary(self, name: str, **labels: str) -> dict[str, Any]:
        with self._lock:
            summary = self._summaries.get(_key(name, labels))
            return summary.snapshot() if summary else _Summary().snapshot()

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "uptime_seconds": round(time.monotonic() - self._start_time, 1),
                "counters": dict(self._counters),
                "summaries": {k: v.snapshot() for k, v in self._summaries.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._summaries.clear()
            self._start_time = time.monotonic()


metrics = MetricsRegistry()
