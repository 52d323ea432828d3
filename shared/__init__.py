"""
Shared utilities for the policy decision service.

Common building blocks consumed by service packages:

- config: Service configuration via pydantic-settings
- logging: Structured logging with trace and request correlation
- metrics: Prometheus metrics helpers
- observability: Business/security event logging bound to metrics and spans
- errors: Error taxonomy and the canonical error response body
- base_service: FastAPI service skeleton (middleware, health, metrics)

Do not import from service packages into shared/.
"""
