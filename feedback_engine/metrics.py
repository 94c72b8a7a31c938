"""
Rolling performance metrics for feedback generation.

Tracks request count, mean latency and cache-hit rate using streaming mean
updates. One sample is recorded per completed request, never per retry
attempt. State lives for the process lifetime only.
"""

import threading

from feedback_engine.models import PerformanceSnapshot


class MetricsTracker:
    """
    Streaming mean of latency and cache-hit fraction.

    Each update is ``avg' = (avg * (n - 1) + sample) / n``. The
    read-modify-write is guarded by a lock, so completions reported from
    worker threads do not lose updates.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._count = 0
        self._avg_latency_ms = 0.0
        self._hit_rate = 0.0

    def record(self, latency_ms: float, was_hit: bool) -> None:
        """
        Record one completed request.

        Args:
            latency_ms: End-to-end latency of the request.
            was_hit: Whether the response came from the cache.
        """
        sample_latency = max(float(latency_ms), 0.0)
        sample_hit = 1.0 if was_hit else 0.0

        with self._lock:
            self._count += 1
            n = self._count
            self._avg_latency_ms = (self._avg_latency_ms * (n - 1) + sample_latency) / n
            self._hit_rate = (self._hit_rate * (n - 1) + sample_hit) / n

    def snapshot(self) -> PerformanceSnapshot:
        """Return the current aggregate values."""
        with self._lock:
            return PerformanceSnapshot(
                count=self._count,
                avg_latency_ms=self._avg_latency_ms,
                hit_rate=min(max(self._hit_rate, 0.0), 1.0),
            )

    def reset(self) -> None:
        """Clear all aggregates."""
        with self._lock:
            self._count = 0
            self._avg_latency_ms = 0.0
            self._hit_rate = 0.0
