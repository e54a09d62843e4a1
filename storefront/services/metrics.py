"""
In-process request metrics.

Tracks:
- Latency percentiles (p50, p95, p99) per route
- Cache hit rates
- Request counts per route
- Error rates
"""

from typing import Dict, Optional
from collections import defaultdict, deque

from storefront.utils.clock import utcnow


class MetricsCollector:
    """
    In-memory metrics collector fed by the latency middleware.

    Exposed to admins via /api/admin/system/health.
    """

    def __init__(self, window_size: int = 1000):
        """
        Args:
            window_size: Number of recent samples to keep for percentiles
        """
        self.window_size = window_size

        # Latency tracking (sliding window)
        self.latencies: Dict[str, deque] = defaultdict(lambda: deque(maxlen=window_size))

        self.cache_hits = 0
        self.cache_misses = 0

        self.request_counts: Dict[str, int] = defaultdict(int)
        self.error_counts: Dict[str, int] = defaultdict(int)

        self.start_time = utcnow()

    def record_latency(self, endpoint: str, latency_ms: float):
        """Record a latency sample for an endpoint."""
        self.latencies[endpoint].append(latency_ms)
        self.request_counts[endpoint] += 1

    def record_cache_hit(self):
        self.cache_hits += 1

    def record_cache_miss(self):
        self.cache_misses += 1

    def record_error(self, endpoint: str):
        """Record an error (5xx response) for an endpoint."""
        self.error_counts[endpoint] += 1

    def get_percentile(self, endpoint: str, percentile: float) -> Optional[float]:
        """
        Get a latency percentile for an endpoint.

        Returns:
            Latency in ms, or None if there are no samples
        """
        samples = self.latencies.get(endpoint)
        if not samples:
            return None

        values = sorted(samples)
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
        """Summary of all metrics, keyed by endpoint."""
        summary = {
            "uptime_seconds": (utcnow() - self.start_time).total_seconds(),
            "cache": {
                "hit_rate_pct": round(self.get_cache_hit_rate(), 2),
                "total_hits": self.cache_hits,
                "total_misses": self.cache_misses,
            },
            "endpoints": {},
        }
        for endpoint in list(self.latencies.keys()):
            summary["endpoints"][endpoint] = {
                "requests": self.request_counts[endpoint],
                "errors": self.error_counts[endpoint],
                "error_rate_pct": round(self.get_error_rate(endpoint), 2),
                "latency_ms": {
                    "p50": self.get_percentile(endpoint, 50),
                    "p95": self.get_percentile(endpoint, 95),
                    "p99": self.get_percentile(endpoint, 99),
                },
            }
        return summary
