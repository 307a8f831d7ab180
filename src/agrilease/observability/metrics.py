"""
In-process metrics for AgriLease.

Counters track domain events (orders created, leases conflicted, events
dropped), gauges hold the latest sampled value (outbound queue depth) and
timings keep a bounded window of recent samples so percentiles stay cheap.
Everything lives in memory and is exposed through ``GET /v1/metrics``.
"""

from collections import defaultdict, deque
from threading import Lock
from typing import Any, Deque

# Recent samples kept per timing series
TIMING_WINDOW = 1024


def _percentile(ordered: list[float], fraction: float) -> float:
    index = min(len(ordered) - 1, round(fraction * (len(ordered) - 1)))
    return ordered[index]


class MetricsRegistry:
    """Counters, gauges and windowed timings behind one lock."""

    def __init__(self, timing_window: int = TIMING_WINDOW) -> None:
        self._lock = Lock()
        self._timing_window = timing_window
        self._counters: dict[str, float] = defaultdict(float)
        self._gauges: dict[str, float] = {}
        self._timings: dict[str, Deque[float]] = {}
        self._timing_counts: dict[str, int] = defaultdict(int)

    def inc_counter(self, name: str, amount: float = 1.0) -> None:
        with self._lock:
            self._counters[name] += amount

    def set_gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = value

    def observe(self, name: str, value: float) -> None:
        with self._lock:
            window = self._timings.get(name)
            if window is None:
                window = self._timings[name] = deque(maxlen=self._timing_window)
            window.append(value)
            self._timing_counts[name] += 1

    def counter(self, name: str) -> float:
        with self._lock:
            return self._counters.get(name, 0.0)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            timings = {}
            for name, window in self._timings.items():
                ordered = sorted(window)
                timings[name] = {
                    "count": self._timing_counts[name],
                    "p50": _percentile(ordered, 0.50),
                    "p95": _percentile(ordered, 0.95),
                    "max": ordered[-1],
                }
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": timings,
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._timings.clear()
            self._timing_counts.clear()


metrics = MetricsRegistry()
