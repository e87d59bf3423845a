"""
Metrics collection for the LedgerSort engine.

Two interchangeable collectors are provided. The backend is picked once when
the engine context is built (``EngineConfig.metrics_backend``) and handed to
every component; nothing reads a global registry per call.
"""
import logging
import math
import threading
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List

logger = logging.getLogger(__name__)

# Keep last N latency samples per operation
MAX_SAMPLES = 1000


def percentile(values: List[float], pct: float) -> float:
    """Nearest-rank percentile; 0.0 for an empty list."""
    if not values:
        return 0.0
    ordered = sorted(values)
    index = max(0, min(len(ordered) - 1, math.ceil(pct * len(ordered)) - 1))
    return ordered[index]


class LatencyTracker:
    """Thread-safe rolling window of durations in milliseconds."""

    def __init__(self, max_samples: int = MAX_SAMPLES) -> None:
        self._samples: Deque[float] = deque(maxlen=max_samples)
        self._count = 0
        self._total_ms = 0.0
        self._lock = threading.Lock()

    def record(self, duration_ms: float) -> None:
        with self._lock:
            self._samples.append(duration_ms)
            self._count += 1
            self._total_ms += duration_ms

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()
            self._count = 0
            self._total_ms = 0.0

    def summary(self) -> Dict[str, float]:
        with self._lock:
            samples = list(self._samples)
            count = self._count
            total = self._total_ms
        if not samples:
            return {"count": count, "total_ms": round(total, 3)}
        return {
            "count": count,
            "total_ms": round(total, 3),
            "avg_ms": round(total / count, 3) if count else 0.0,
            "min_ms": round(min(samples), 3),
            "max_ms": round(max(samples), 3),
            "p50_ms": round(percentile(samples, 0.50), 3),
            "p95_ms": round(percentile(samples, 0.95), 3),
            "p99_ms": round(percentile(samples, 0.99), 3),
        }


class MetricsCollector(ABC):
    """Outbound metrics sink polled by dashboards."""

    @abstractmethod
    def increment(self, name: str, value: int = 1) -> None:
        """Bump a counter."""

    @abstractmethod
    def timing(self, name: str, duration_ms: float) -> None:
        """Record an operation latency."""

    @abstractmethod
    def snapshot(self) -> Dict[str, Any]:
        """Current values; safe to call concurrently."""

    @abstractmethod
    def reset(self) -> None:
        """Drop all recorded values."""


class InMemoryMetricsCollector(MetricsCollector):
    """Keeps counters and latency windows in process memory."""

    def __init__(self) -> None:
        self._counters: Dict[str, int] = defaultdict(int)
        self._timings: Dict[str, LatencyTracker] = {}
        self._lock = threading.Lock()
        self._start_time = datetime.now(timezone.utc)

    def increment(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] += value

    def timing(self, name: str, duration_ms: float) -> None:
        with self._lock:
            tracker = self._timings.get(name)
            if tracker is None:
                tracker = self._timings[name] = LatencyTracker()
        tracker.record(duration_ms)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            counters = dict(self._counters)
            timings = dict(self._timings)
        uptime_seconds = (datetime.now(timezone.utc) - self._start_time).total_seconds()
        return {
            "backend": "memory",
            "uptime_seconds": int(uptime_seconds),
            "counters": counters,
            "timings": {name: tracker.summary() for name, tracker in timings.items()},
        }

    def reset(self) -> None:
        with self._lock:
            self._counters = defaultdict(int)
            self._timings = {}
            self._start_time = datetime.now(timezone.utc)


class LoggingMetricsCollector(InMemoryMetricsCollector):
    """In-memory collector that also emits every data point to the log."""

    def __init__(self, log_level: int = logging.DEBUG) -> None:
        super().__init__()
        self.log_level = log_level

    def increment(self, name: str, value: int = 1) -> None:
        super().increment(name, value)
        logger.log(self.log_level, "metric counter %s +%d", name, value)

    def timing(self, name: str, duration_ms: float) -> None:
        super().timing(name, duration_ms)
        logger.log(self.log_level, "metric timing %s %.3fms", name, duration_ms)

    def snapshot(self) -> Dict[str, Any]:
        data = super().snapshot()
        data["backend"] = "logging"
        return data


def build_metrics_collector(backend: str) -> MetricsCollector:
    """Pick the collector implementation named in configuration."""
    if backend == "logging":
        return LoggingMetricsCollector()
    if backend == "memory":
        return InMemoryMetricsCollector()
    raise ValueError(f"Unknown metrics backend: {backend}")
