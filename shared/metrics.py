"""
Shared metrics for the distributed limiters.
"""

from typing import Any, Dict, Optional
import threading

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram, start_http_server


class LimiterMetrics:
    """Prometheus metrics recorded by the rate and worker limiters."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up limiter metrics."""
        self._metrics["limiter_decisions_total"] = Counter(
            "limiter_decisions_total",
            "Total admission decisions",
            ["limiter", "outcome"],
            registry=self.registry
        )

        self._metrics["limiter_wait_seconds"] = Histogram(
            "limiter_wait_seconds",
            "Time spent suspended waiting for capacity",
            ["limiter"],
            buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 60.0),
            registry=self.registry
        )

        self._metrics["limiter_backend_errors_total"] = Counter(
            "limiter_backend_errors_total",
            "Total storage or lock backend errors",
            ["limiter", "error"],
            registry=self.registry
        )

        self._metrics["worker_slots_in_use"] = Gauge(
            "worker_slots_in_use",
            "Worker slots currently held by this process",
            ["name"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def start_metrics_server(self, port: int = 9090):
        """Start the Prometheus metrics server."""
        start_http_server(port, registry=self.registry or REGISTRY)

    def record_decision(self, limiter: str, outcome: str):
        """Record an allowed/denied/timeout decision."""
        self._metrics["limiter_decisions_total"].labels(limiter=limiter, outcome=outcome).inc()

    def record_wait(self, limiter: str, seconds: float):
        """Record time spent in a blocking wait."""
        self._metrics["limiter_wait_seconds"].labels(limiter=limiter).observe(seconds)

    def record_backend_error(self, limiter: str, error: str):
        """Record a backend failure."""
        self._metrics["limiter_backend_errors_total"].labels(limiter=limiter, error=error).inc()

    def slot_acquired(self, name: str):
        with self._lock:
            self._metrics["worker_slots_in_use"].labels(name=name).inc()

    def slot_released(self, name: str):
        with self._lock:
            self._metrics["worker_slots_in_use"].labels(name=name).dec()


_default_metrics: Optional[LimiterMetrics] = None


def get_limiter_metrics(registry: Optional[CollectorRegistry] = None) -> LimiterMetrics:
    """Get a metrics recorder for the limiters.

    Without an explicit registry the process-wide recorder bound to the
    default prometheus registry is returned; metric names may only be
    registered there once.
    """
    global _default_metrics
    if registry is not None:
        return LimiterMetrics(registry)
    if _default_metrics is None:
        _default_metrics = LimiterMetrics(REGISTRY)
    return _default_metrics
