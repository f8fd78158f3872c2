"""
Prometheus metrics for World Monitor gateway services.

Each collector owns its own ``CollectorRegistry`` so several service
instances (for example in tests) never collide on metric names.
"""

import time
from contextlib import contextmanager
from typing import Any, Dict, Optional, Sequence, Tuple

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info

SERVICE_VERSION = "1.0.0"

MetricSpec = Tuple[type, str, str, Sequence[str]]

COMMON_METRICS: Sequence[MetricSpec] = (
    (Counter, "http_requests_total", "Total HTTP requests", ("method", "endpoint", "status_code")),
    (Histogram, "http_request_duration_seconds", "HTTP request duration in seconds", ("method", "endpoint")),
    (Counter, "health_check_total", "Total health check requests", ("status",)),
    (Counter, "errors_total", "Total errors", ("error_type", "service")),
)

CACHE_METRICS: Sequence[MetricSpec] = (
    (Counter, "cache_hits_total", "Response cache hits", ("route",)),
    (Counter, "cache_misses_total", "Response cache misses", ("route",)),
    (Counter, "cache_writes_total", "Response cache writes by outcome", ("route", "result")),
    (Counter, "handler_errors_total", "Handler failures converted to 500 replies", ("route",)),
    (Histogram, "handler_duration_seconds", "Handler execution time in seconds", ("route",)),
)

RELAY_METRICS: Sequence[MetricSpec] = (
    (Gauge, "relay_subscribers", "Connected relay subscribers", ()),
    (Gauge, "relay_upstream_connected", "1 while the upstream relay connection is open", ()),
    (Counter, "relay_messages_total", "Upstream messages relayed", ()),
    (Counter, "relay_reconnects_total", "Scheduled upstream reconnects", ()),
)

# Extra metric families per service name
SERVICE_METRICS: Dict[str, Sequence[MetricSpec]] = {
    "gateway": tuple(CACHE_METRICS) + tuple(RELAY_METRICS),
}


class MetricsCollector:
    """Named metrics for one service, looked up by metric name."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}

        info = Info("service_info", "Service information", registry=self.registry)
        info.info({"service": service_name, "version": SERVICE_VERSION})
        self._metrics["service_info"] = info

        for spec in tuple(COMMON_METRICS) + tuple(SERVICE_METRICS.get(service_name, ())):
            self._register(*spec)

    def _register(self, kind: type, name: str, documentation: str, labels: Sequence[str]) -> None:
        self._metrics[name] = kind(name, documentation, list(labels), registry=self.registry)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        self.increment_counter("http_requests_total", method=method, endpoint=endpoint, status_code=str(status_code))
        self.observe_histogram("http_request_duration_seconds", duration, method=method, endpoint=endpoint)

    def record_health_check(self, status: str):
        self.increment_counter("health_check_total", status=status)

    def record_error(self, error_type: str, service: Optional[str] = None):
        self.increment_counter("errors_total", error_type=error_type, service=service or self.service_name)

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Observe the duration of the wrapped block on a histogram."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.observe_histogram(operation_name, time.perf_counter() - started, **labels)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter; unknown names are ignored."""
        metric = self._metrics.get(metric_name)
        if metric is not None:
            self._child(metric, labels).inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        metric = self._metrics.get(metric_name)
        if metric is not None:
            self._child(metric, labels).set(value)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        metric = self._metrics.get(metric_name)
        if metric is not None:
            self._child(metric, labels).observe(value)

    @staticmethod
    def _child(metric: Any, labels: Dict[str, Any]) -> Any:
        return metric.labels(**labels) if labels else metric


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Create the metrics collector for a service."""
    return MetricsCollector(service_name, registry)
