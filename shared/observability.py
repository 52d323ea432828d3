"""
Observability helpers for the policy decision service.
Binds request context and emits structured events with matching metrics.
"""

from typing import Any, Optional

from opentelemetry import trace

from .logging import configure_logging, get_logger, set_request_context, set_request_id
from .metrics import MetricsCollector, get_metrics_collector


def add_span_attributes(**attributes: Any):
    """Annotate the current span, skipping empty values."""
    span = trace.get_current_span()
    if span and span.is_recording():
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, value)


def add_span_event(name: str, **attributes: Any):
    """Add an event to the current span."""
    span = trace.get_current_span()
    if span and span.is_recording():
        span.add_event(name, {k: str(v) for k, v in attributes.items() if v is not None})


class ObservabilityManager:
    """Centralized observability manager for services."""

    def __init__(self, service_name: str, log_level: str = "info", environment: str = "local",
                 metrics: Optional[MetricsCollector] = None, console: bool = False):
        self.service_name = service_name
        self.log_level = log_level
        self.environment = environment

        configure_logging(service_name, log_level, environment, console=console)
        self.metrics = metrics or get_metrics_collector(service_name)
        self.logger = get_logger(f"{service_name}.observability")

        self.logger.info("Observability initialized",
                         log_level=log_level,
                         environment=environment)

    def trace_request(self, request_id: Optional[str] = None,
                      principal_id: Optional[str] = None,
                      tenant_id: Optional[str] = None) -> str:
        """Set up request context for logs and spans."""
        request_id = set_request_id(request_id)
        set_request_context(principal_id, tenant_id)
        add_span_attributes(request_id=request_id, principal_id=principal_id, tenant_id=tenant_id)
        return request_id

    def log_error(self, error_type: str, error_message: str, **kwargs):
        """Log error with full context."""
        self.logger.error(
            "Error occurred",
            event_type="error",
            error_type=error_type,
            error_message=error_message,
            **kwargs
        )
        self.metrics.record_error(error_type)
        add_span_event("error", error_type=error_type, error_message=error_message)

    def log_business_event(self, event_type: str, **kwargs):
        """Log business event with full context."""
        self.logger.info(
            "Business event",
            event_type=event_type,
            **kwargs
        )
        self.metrics.record_business_event(event_type)
        add_span_event("business_event", event_type=event_type, **kwargs)

    def log_security_event(self, event: str, **kwargs):
        """Log a security-relevant observation at warning level."""
        self.logger.warning(
            f"Security event: {event}",
            event_type="security",
            security_event=event,
            **kwargs
        )
        self.metrics.record_business_event(f"security_{event}")
        add_span_event("security_event", security_event=event, **kwargs)

    def log_policy_evaluation(self, principal: str, action: str, resource: str,
                              allowed: bool, policy_id: str, duration: float,
                              **kwargs: Any):
        """Log a completed policy evaluation and record its metrics."""
        self.logger.info(
            "Policy evaluation",
            event_type="policy_evaluation",
            principal=principal,
            action=action,
            resource=resource,
            allowed=allowed,
            policy_id=policy_id,
            evaluation_time_ms=round(duration * 1000, 3),
            **kwargs
        )
        self.metrics.record_policy_evaluation(allowed, policy_id, duration)


def get_observability_manager(service_name: str, **kwargs) -> ObservabilityManager:
    """Get an observability manager for a service."""
    return ObservabilityManager(service_name, **kwargs)
