"""Metrics service for tracking recommendation traffic.

Singleton service counting recommendation requests, their latency, how many
items each sampler contributed, and failures of detached background tasks.
"""

import threading
from typing import Dict


class MetricsService:
    """Singleton service for tracking API metrics.

    Thread-safe counters; the event loop and worker threads may both record.
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        """Create singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super(MetricsService, cls).__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize metrics counters."""
        if self._initialized:
            return

        self._lock = threading.Lock()
        self._reset_counters()
        self._initialized = True

    def _reset_counters(self) -> None:
        self._request_count = 0
        self._total_latency_ms = 0.0
        self._min_latency_ms = float("inf")
        self._max_latency_ms = 0.0
        self._content_items = 0
        self._collab_items = 0
        self._background_failures: Dict[str, int] = {}

    def record_recommendation(
        self,
        latency_ms: float,
        content_items: int = 0,
        collab_items: int = 0,
    ) -> None:
        """Record a served recommendation request.

        Args:
            latency_ms: Latency in milliseconds
            content_items: Items contributed by content-based sampling
            collab_items: Items contributed by collaborative sampling
        """
        with self._lock:
            self._request_count += 1
            self._total_latency_ms += latency_ms
            self._min_latency_ms = min(self._min_latency_ms, latency_ms)
            self._max_latency_ms = max(self._max_latency_ms, latency_ms)
            self._content_items += content_items
            self._collab_items += collab_items

    def record_background_failure(self, task_name: str) -> None:
        with self._lock:
            self._background_failures[task_name] = self._background_failures.get(task_name, 0) + 1

    def get_metrics(self) -> Dict:
        """Get current metrics.

        Returns:
            Dictionary with metrics including:
            - request_count: Total number of recommendation requests served
            - average_latency_ms / min_latency_ms / max_latency_ms
            - content_items / collab_items: Items served per sampler
            - background_failures: Failed detached tasks by task name
        """
        with self._lock:
            avg_latency = (
                self._total_latency_ms / self._request_count
                if self._request_count > 0
                else 0.0
            )

            return {
                "request_count": self._request_count,
                "average_latency_ms": round(avg_latency, 2),
                "min_latency_ms": round(self._min_latency_ms, 2) if self._request_count else 0.0,
                "max_latency_ms": round(self._max_latency_ms, 2),
                "content_items": self._content_items,
                "collab_items": self._collab_items,
                "background_failures": dict(self._background_failures),
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._reset_counters()


# Global singleton instance
metrics_service = MetricsService()
