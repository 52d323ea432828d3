"""
Prometheus metrics for the policy decision service.
"""

from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info


class MetricsCollector:
    """Centralized metrics collector for a service.

    Each collector owns its registry so several service instances (tests,
    embedded use) can coexist in one process.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""
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

        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._metrics["business_events_total"] = Counter(
            "business_events_total",
            "Total business events",
            ["event_type", "service"],
            registry=self.registry
        )

        self._setup_policy_metrics()

    def _setup_policy_metrics(self):
        """Set up policy engine and cache metrics."""
        self._metrics["policy_evaluations_total"] = Counter(
            "policy_evaluations_total",
            "Total policy evaluations",
            ["decision", "policy_id"],
            registry=self.registry
        )

        self._metrics["policy_evaluation_duration_seconds"] = Histogram(
            "policy_evaluation_duration_seconds",
            "Policy evaluation duration in seconds",
            registry=self.registry
        )

        self._metrics["policy_cache_operations_total"] = Counter(
            "policy_cache_operations_total",
            "Total policy cache operations",
            ["operation", "result"],
            registry=self.registry
        )

        self._metrics["policy_cache_tenants"] = Gauge(
            "policy_cache_tenants",
            "Tenants with cached policy keys at the last stats scan",
            registry=self.registry
        )

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
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def record_business_event(self, event_type: str, service: Optional[str] = None):
        """Record business event metrics."""
        service_name = service or self.service_name
        self._metrics["business_events_total"].labels(event_type=event_type, service=service_name).inc()

    def record_policy_evaluation(self, allowed: bool, policy_id: str, duration: float):
        """Record the outcome and latency of one evaluation."""
        self._metrics["policy_evaluations_total"].labels(
            decision="allow" if allowed else "deny",
            policy_id=policy_id
        ).inc()
        self._metrics["policy_evaluation_duration_seconds"].observe(duration)

    def record_cache_operation(self, operation: str, result: str):
        """Record a policy cache operation (hit, miss, ok, error)."""
        self._metrics["policy_cache_operations_total"].labels(operation=operation, result=result).inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        metric = self._metrics.get(metric_name)
        if metric is not None:
            (metric.labels(**labels) if labels else metric).set(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
