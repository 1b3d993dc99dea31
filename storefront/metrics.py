"""
In-process metrics for the storefront service.

Tracks:
- Latency percentiles (p50, p95, p99) per route
- Cache hit rates and cache backend errors
- Request and error counts per route
"""

import statistics
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Dict, Optional


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MetricsCollector:
    """
    In-memory metrics collector.

    Counters are plain ints; under the threadpool a lost increment is
    acceptable for these figures.
    """

    def __init__(self, window_size: int = 1000):
        """
        Args:
            window_size: Number of recent samples to keep for percentiles
        """
        self.window_size = window_size

        self.latencies: Dict[str, deque] = defaultdict(lambda: deque(maxlen=window_size))

        self.cache_hits = 0
        self.cache_misses = 0
        self.cache_errors = 0

        self.request_counts: Dict[str, int] = defaultdict(int)
        self.error_counts: Dict[str, int] = defaultdict(int)

        self.start_time = _now()
        self.last_reset = _now()

    def record_latency(self, endpoint: str, latency_ms: float):
        """Record a latency sample for an endpoint."""
        self.latencies[endpoint].append(latency_ms)
        self.request_counts[endpoint] += 1

    def record_cache_hit(self):
        self.cache_hits += 1

    def record_cache_miss(self):
        self.cache_misses += 1

    def record_cache_error(self):
        """Record a cache backend failure (the request still falls through to the database)."""
        self.cache_errors += 1

    def record_error(self, endpoint: str):
        self.error_counts[endpoint] += 1

    def get_percentile(self, endpoint: str, percentile: float) -> Optional[float]:
        """
        Get a latency percentile for an endpoint.

        Returns:
            Latency in ms, or None if fewer than 10 samples exist
        """
        if endpoint not in self.latencies or len(self.latencies[endpoint]) == 0:
            return None

        values = sorted(self.latencies[endpoint])
        if len(values) < 10:
            return None

        index = int(len(values) * (percentile / 100.0))
        index = min(index, len(values) - 1)
        return values[index]

    def get_cache_hit_rate(self) -> float:
        """Get the cache hit rate as a percentage."""
        total = self.cache_hits + self.cache_misses
        if total == 0:
            return 0.0
        return (self.cache_hits / total) * 100.0

    def get_error_rate(self, endpoint: str) -> float:
        total_requests = self.request_counts[endpoint]
        if total_requests == 0:
            return 0.0
        return (self.error_counts[endpoint] / total_requests) * 100.0

    def get_summary(self) -> Dict:
        """Summary of all metrics, keyed by route."""
        uptime_seconds = (_now() - self.start_time).total_seconds()

        summary = {
            "uptime_seconds": uptime_seconds,
            "cache": {
                "hit_rate_pct": round(self.get_cache_hit_rate(), 2),
                "total_hits": self.cache_hits,
                "total_misses": self.cache_misses,
                "total_errors": self.cache_errors,
            },
            "endpoints": {},
        }

        for endpoint in self.request_counts.keys():
            endpoint_metrics = {
                "total_requests": self.request_counts[endpoint],
                "total_errors": self.error_counts[endpoint],
                "error_rate_pct": round(self.get_error_rate(endpoint), 2),
            }

            for pct in (50, 95, 99):
                value = self.get_percentile(endpoint, pct)
                if value is not None:
                    endpoint_metrics[f"latency_p{pct}_ms"] = round(value, 2)

            if len(self.latencies[endpoint]) > 0:
                endpoint_metrics["latency_avg_ms"] = round(
                    statistics.mean(self.latencies[endpoint]), 2
                )

            summary["endpoints"][endpoint] = endpoint_metrics

        return summary

    def reset(self):
        """Reset all metrics (useful for testing)."""
        self.latencies.clear()
        self.cache_hits = 0
        self.cache_misses = 0
        self.cache_errors = 0
        self.request_counts.clear()
        self.error_counts.clear()
        self.last_reset = _now()


# Global metrics collector instance
metrics_collector = MetricsCollector()
