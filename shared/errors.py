"""
Error taxonomy for the policy decision service.

Every user-visible failure is a ``PolicyServiceError`` carrying a stable
error code from the boundary vocabulary (``MISSING_REQUIRED_FIELDS``,
``MISSING_TENANT_ID``, ``EVALUATION_FAILED``, ``CREATE_POLICY_FAILED``, ...).
"""

from typing import Any, Dict, Optional

from opentelemetry import trace
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    success: bool = False
    error: str
    message: str
    request_id: Optional[str] = None
    trace_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class PolicyServiceError(Exception):
    """Base exception for the policy decision service."""

    status_code = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            error=self.code,
            message=self.message,
            request_id=request_id,
            trace_id=trace_id,
            details=self.details,
        )


class ValidationError(PolicyServiceError):
    """Caller error: missing fields or tenant. Never retried."""

    status_code = 400

    def __init__(self, code: str = "VALIDATION_ERROR", message: str = "Validation failed",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class NotFoundError(PolicyServiceError):
    """Requested entity does not exist."""

    status_code = 404

    def __init__(self, code: str = "NOT_FOUND", message: str = "Not found",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class CacheError(PolicyServiceError):
    """Policy cache failure."""

    def __init__(self, code: str = "CACHE_ERROR", message: str = "Policy cache error",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class EngineError(PolicyServiceError):
    """Unexpected failure while evaluating a request."""

    def __init__(self, message: str = "Policy evaluation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("EVALUATION_FAILED", message, details)


class HealthCheckError(PolicyServiceError):
    """Health probe failure."""

    status_code = 503

    def __init__(self, message: str = "Health check failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("HEALTH_CHECK_FAILED", message, details)
