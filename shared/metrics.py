"""
Shared metrics configuration for the feature flag service.
"""

from prometheus_client import REGISTRY, Counter, Histogram, Gauge, Info, CollectorRegistry, start_http_server
from typing import Dict, Any, Optional
import threading


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or REGISTRY
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        # Service info
        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        # Health check metrics
        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        # Error metrics
        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._setup_feature_flag_metrics()

    def _setup_feature_flag_metrics(self):
        """Set up feature-flag-specific metrics."""
        self._metrics["feature_flag_evaluations_total"] = Counter(
            "feature_flag_evaluations_total",
            "Total feature flag evaluations",
            ["flag", "enabled", "source"],
            registry=self.registry
        )

        self._metrics["feature_flag_evaluation_duration_seconds"] = Histogram(
            "feature_flag_evaluation_duration_seconds",
            "Feature flag evaluation duration in seconds",
            ["source"],
            buckets=[0.0001, 0.00025, 0.0005, 0.001, 0.0025, 0.005, 0.01, 0.05, 0.1, 0.5],
            registry=self.registry
        )

        self._metrics["feature_flag_cache_errors_total"] = Counter(
            "feature_flag_cache_errors_total",
            "Decision cache backend failures",
            ["operation"],
            registry=self.registry
        )

        self._metrics["feature_flag_fail_closed_total"] = Counter(
            "feature_flag_fail_closed_total",
            "Evaluations resolved to the fail-closed default",
            ["reason"],
            registry=self.registry
        )

        self._metrics["feature_flag_mutations_total"] = Counter(
            "feature_flag_mutations_total",
            "Feature flag administrative mutations",
            ["operation"],
            registry=self.registry
        )

        self._metrics["feature_flags_loaded"] = Gauge(
            "feature_flags_loaded",
            "Number of flag definitions in the active snapshot",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def start_metrics_server(self, port: int = 9090):
        """Start Prometheus metrics server."""
        start_http_server(port, registry=self.registry)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error."""
        service = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service).inc()

    def record_evaluation(self, flag: str, enabled: bool, source: str, duration: float):
        """Record a top-level flag evaluation."""
        self._metrics["feature_flag_evaluations_total"].labels(
            flag=flag,
            enabled=str(enabled).lower(),
            source=source
        ).inc()
        self._metrics["feature_flag_evaluation_duration_seconds"].labels(source=source).observe(duration)

    def record_cache_error(self, operation: str):
        """Record a decision cache backend failure."""
        self._metrics["feature_flag_cache_errors_total"].labels(operation=operation).inc()

    def record_fail_closed(self, reason: str):
        """Record an evaluation that fell back to the fail-closed default."""
        self._metrics["feature_flag_fail_closed_total"].labels(reason=reason).inc()

    def record_mutation(self, operation: str):
        """Record a flag administrative mutation."""
        self._metrics["feature_flag_mutations_total"].labels(operation=operation).inc()

    def set_flags_loaded(self, count: int):
        """Set the number of loaded flag definitions."""
        self._metrics["feature_flags_loaded"].set(count)


_collectors: Dict[str, MetricsCollector] = {}
_collectors_lock = threading.Lock()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service.

    Collectors bound to the default registry are memoised per service name,
    since prometheus_client refuses to register the same series twice.
    """
    if registry is not None:
        return MetricsCollector(service_name, registry)

    with _collectors_lock:
        collector = _collectors.get(service_name)
        if collector is None:
            collector = MetricsCollector(service_name)
            _collectors[service_name] = collector
        return collector
