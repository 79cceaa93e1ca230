"""
Metrics
~~~~~~~

Prometheus-style counters for swapguard transactions.
"""

from __future__ import annotations

import threading

__all__ = ["MetricsCollector"]

_COUNTERS = (
    "transactions",
    "commits",
    "rollbacks",
    "failures",
    "aborts",
    "interruptions",
    "steps_run",
    "step_failures",
    "verification_failures",
    "snapshots_captured",
    "snapshots_disposed",
)


class MetricsCollector:
    """Thread-safe counter tracking for all swapguard operations."""

    def __init__(self) -> None:
        self._counters: dict[str, int] = dict.fromkeys(_COUNTERS, 0)
        self._duration_sum_ms: int = 0
        self._lock = threading.RLock()

    def increment(self, name: str, amount: int = 1) -> None:
        """Increment a counter. Unknown names are ignored."""
        with self._lock:
            if name in self._counters:
                self._counters[name] += amount

    def record_duration(self, ms: int) -> None:
        """Record a finished transaction's duration."""
        with self._lock:
            self._duration_sum_ms += ms

    def get(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def snapshot(self) -> dict[str, float]:
        """Return a copy of all counters plus the average duration."""
        with self._lock:
            data: dict[str, float] = dict(self._counters)
            total = self._counters["transactions"]
            data["avg_duration_ms"] = self._duration_sum_ms / total if total else 0.0
            return data

    def to_prometheus(self) -> str:
        """Render as Prometheus text exposition format."""
        lines = [f"swapguard_{name} {value}" for name, value in self.snapshot().items()]
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            for key in self._counters:
                self._counters[key] = 0
            self._duration_sum_ms = 0
