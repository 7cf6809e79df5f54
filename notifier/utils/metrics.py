"""
Metrics Collection for the dispatch core.

Counts sends, failures, scheduled retries and dead-lettered attempts.
"""

import functools
import threading
import time
from collections import defaultdict
from typing import Any, Dict

from notifier.utils.time import utcnow


class MetricsCollector:
    """Collects and manages in-process metrics for the dispatch pipeline."""

    def __init__(self):
        """Initialize metrics collector."""
        self.metrics = defaultdict(int)
        self.timers = defaultdict(float)
        self.lock = threading.Lock()

        # Initialize counters
        self.metrics["notifications_sent_total"] = 0
        self.metrics["notifications_failed_total"] = 0
        self.metrics["retries_scheduled_total"] = 0
        self.metrics["dead_letter_total"] = 0
        self.metrics["duplicate_requests_total"] = 0

    def increment_counter(self, metric_name: str, value: int = 1):
        """Increment a counter metric."""
        with self.lock:
            self.metrics[metric_name] += value

    def record_timer(self, metric_name: str, duration: float):
        """Record a timing metric."""
        with self.lock:
            self.timers[metric_name] += duration

    def get_metrics(self) -> Dict[str, Any]:
        """Get current metrics values."""
        with self.lock:
            return {
                "counters": dict(self.metrics),
                "timers": dict(self.timers),
                "timestamp": utcnow().isoformat(),
            }

    def reset(self):
        with self.lock:
            for name in list(self.metrics):
                self.metrics[name] = 0
            self.timers.clear()

    def notification_sent(self, channel: str):
        """Record a successful send on a channel."""
        self.increment_counter("notifications_sent_total")
        self.increment_counter(f"notifications_sent_{channel}")

    def notification_failed(self, channel: str):
        """Record a terminal failure on a channel."""
        self.increment_counter("notifications_failed_total")
        self.increment_counter(f"notifications_failed_{channel}")

    def retry_scheduled(self):
        self.increment_counter("retries_scheduled_total")

    def dead_lettered(self):
        self.increment_counter("dead_letter_total")

    def duplicate_request(self):
        self.increment_counter("duplicate_requests_total")

    def time_operation(self, metric_name: str):
        """Decorator that records the wall time of an async operation."""
        def decorator(func):
            @functools.wraps(func)
            async def wrapper(*args, **kwargs):
                start_time = time.perf_counter()
                try:
                    return await func(*args, **kwargs)
                finally:
                    self.record_timer(metric_name, time.perf_counter() - start_time)
            return wrapper
        return decorator


# One collector per process, shared by the services and the /metrics endpoint
metrics_collector = MetricsCollector()
