"""
Policy decision service.
"""

import time
from datetime import datetime, timezone
from typing import Mapping, Optional

from fastapi import Query

from shared.base_service import BaseService
from shared.errors import CacheError, EngineError, NotFoundError, PolicyServiceError, ValidationError
from shared.logging import get_logger, get_request_id
from shared.observability import get_observability_manager

from .cache.redis_cache import PolicyCache
from .health import HealthAggregator
from .policies.defaults import BUILTIN_POLICIES
from .policies.engine import PolicyEngine
from .policies.models import (
    CreatePolicyRequest, EvaluateRequest, EvaluateResponse, Policy, PolicyListResponse
)

SERVICE_NAME = "policy"
SERVICE_PORT = 8013


def _require_tenant(tenant_id: Optional[str], message: str = "Tenant ID is required") -> str:
    if not tenant_id:
        raise ValidationError("MISSING_TENANT_ID", message)
    return tenant_id


class PolicyService(BaseService):
    """Policy service implementation."""

    def __init__(
        self,
        cache: Optional[PolicyCache] = None,
        builtin_policies: Mapping[str, Policy] = BUILTIN_POLICIES,
        **config_overrides,
    ):
        super().__init__(SERVICE_NAME, SERVICE_PORT, **config_overrides)

        self.observability = get_observability_manager(
            SERVICE_NAME,
            log_level=self.config.log_level,
            environment=self.config.env,
            metrics=self.metrics,
            console=self.config.enable_console_logging,
        )

        self.cache = cache or PolicyCache(
            self.config.redis_url,
            ttl_seconds=self.config.policy_cache_ttl,
            key_prefix=self.config.policy_cache_prefix,
            socket_timeout=self.config.redis_socket_timeout,
            metrics=self.metrics,
        )
        self.engine = PolicyEngine(self.cache, builtin_policies, logger=get_logger("policy.engine"))
        self.health = HealthAggregator(self.engine, self.cache)

        self._setup_policy_routes()

    def _setup_policy_routes(self):
        """Set up policy-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "Tenant-scoped policy decision service",
                "version": "1.0.0",
                "capabilities": ["evaluation", "policy_management", "caching"]
            }

        @self.app.post("/evaluate", response_model=EvaluateResponse)
        async def evaluate(request: EvaluateRequest):
            """Evaluate whether a principal may perform an action on a resource."""
            start_time = time.time()

            if not (request.principal and request.action and request.resource):
                self.logger.warning("Missing required fields in policy evaluation request")
                raise ValidationError("MISSING_REQUIRED_FIELDS", "Principal, action, and resource are required")

            tenant_id = _require_tenant(request.tenant_id(), "Tenant ID is required for policy evaluation")

            context_request_id = request.context.request_id if request.context else None
            request_id = self.observability.trace_request(
                context_request_id or get_request_id(),
                principal_id=request.principal.id,
                tenant_id=tenant_id,
            )
            self._flag_cross_tenant(request, tenant_id)

            try:
                principal, action, resource, context = request.to_domain(tenant_id, request_id)
                result = self.engine.evaluate_policy(principal, action, resource, context)
            except Exception as e:
                self.observability.log_error("evaluation_failed", str(e), request_id=request_id)
                raise EngineError(details={"request_id": request_id})

            duration = time.time() - start_time
            self.observability.log_policy_evaluation(
                principal=principal.id,
                action=action.id,
                resource=resource.id,
                allowed=result.allowed,
                policy_id=result.policy_id,
                duration=duration,
                tenant_id=tenant_id,
            )

            return EvaluateResponse(
                allowed=result.allowed,
                policy_id=result.policy_id,
                evaluation_time_ms=round(duration * 1000, 3),
                request_id=request_id,
                metadata=result.metadata,
            )

        @self.app.get("/policies", response_model=PolicyListResponse)
        async def list_policies(tenant_id: Optional[str] = Query(None, description="Tenant ID")):
            """List the tenant's policies."""
            tenant_id = _require_tenant(tenant_id)
            try:
                policies = await self.engine.get_policies(tenant_id)
            except Exception as e:
                self.observability.log_error("get_policies_failed", str(e), tenant_id=tenant_id)
                raise PolicyServiceError("GET_POLICIES_FAILED", "Failed to retrieve policies")

            return PolicyListResponse(policies=policies, count=len(policies))

        @self.app.post("/policies", status_code=201)
        async def create_policy(request: CreatePolicyRequest):
            """Create a policy for a tenant."""
            if request.policy is None or not request.tenant_id:
                raise ValidationError("MISSING_REQUIRED_FIELDS", "Policy and tenant_id are required")

            try:
                result = await self.engine.create_policy(request.policy, request.tenant_id)
            except Exception as e:
                self.observability.log_error("create_policy_failed", str(e), tenant_id=request.tenant_id)
                raise PolicyServiceError("CREATE_POLICY_FAILED", "Failed to create policy")

            self.observability.log_business_event(
                "policy_created", tenant_id=request.tenant_id, policy_id=result["policy_id"]
            )
            return {
                "success": True,
                "policy_id": result["policy_id"],
                "message": "Policy created successfully"
            }

        @self.app.get("/policies/{policy_id}")
        async def get_policy(policy_id: str, tenant_id: Optional[str] = Query(None, description="Tenant ID")):
            """Get one policy of a tenant."""
            tenant_id = _require_tenant(tenant_id)
            policy = await self.engine.get_policy(tenant_id, policy_id)
            if policy is None:
                raise NotFoundError("POLICY_NOT_FOUND", "Policy not found", {"policy_id": policy_id})
            return {"success": True, "policy": policy.model_dump(mode="json")}

        @self.app.delete("/policies/{policy_id}")
        async def delete_policy(policy_id: str, tenant_id: Optional[str] = Query(None, description="Tenant ID")):
            """Delete one policy of a tenant."""
            tenant_id = _require_tenant(tenant_id)
            try:
                deleted = await self.engine.delete_policy(tenant_id, policy_id)
            except Exception as e:
                self.observability.log_error("delete_policy_failed", str(e), tenant_id=tenant_id)
                raise PolicyServiceError("DELETE_POLICY_FAILED", "Failed to delete policy")

            if not deleted:
                raise NotFoundError("POLICY_NOT_FOUND", "Policy not found", {"policy_id": policy_id})

            self.observability.log_business_event("policy_deleted", tenant_id=tenant_id, policy_id=policy_id)
            return {"success": True, "message": "Policy deleted successfully"}

        @self.app.get("/cache/stats")
        async def get_cache_stats():
            """Get engine and cache statistics."""
            stats = await self.cache.get_cache_stats()
            return {
                "engine": self.engine.get_engine_stats(),
                "cache": stats.to_dict(),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

        @self.app.post("/cache/refresh")
        async def refresh_cache_ttl(tenant_id: Optional[str] = Query(None, description="Tenant ID")):
            """Extend the TTL of the tenant's cached policy list."""
            tenant_id = _require_tenant(tenant_id)
            refreshed = await self.cache.refresh_cache_ttl(tenant_id)
            return {"success": True, "refreshed": refreshed}

        @self.app.delete("/cache")
        async def clear_tenant_cache(tenant_id: Optional[str] = Query(None, description="Tenant ID")):
            """Drop every cached key of a tenant."""
            tenant_id = _require_tenant(tenant_id)
            keys_cleared = await self.cache.clear_policies(tenant_id)
            self.observability.log_business_event("policy_cache_cleared", tenant_id=tenant_id,
                                                  keys_cleared=keys_cleared)
            return {"success": True, "keys_cleared": keys_cleared}

    def _flag_cross_tenant(self, request: EvaluateRequest, tenant_id: str):
        """Log requests whose parts name different tenants. The decision is not affected."""
        others = {
            "resource": request.resource.tenant_id,
            "context": request.context.tenant_id if request.context else None,
        }
        for part, other_tenant in others.items():
            if other_tenant and other_tenant != tenant_id:
                self.observability.log_security_event(
                    "cross_tenant_reference",
                    part=part,
                    tenant_id=tenant_id,
                    other_tenant_id=other_tenant,
                    principal=request.principal.id,
                )

    async def _check_health(self):
        """Aggregate engine and cache health."""
        report = await self.health.check()
        payload = report.to_dict()
        payload["service"] = SERVICE_NAME
        return payload

    async def start(self):
        """Start policy service components."""
        try:
            await self.cache.connect()
        except CacheError as e:
            # Evaluation does not depend on the cache; reads fall back to built-ins.
            self.logger.warning("Policy cache unavailable at startup", error=e.message)

        self.logger.info("Policy service started", builtin_policies=len(self.engine.builtin_policies))

    async def stop(self):
        """Stop policy service components."""
        await self.cache.disconnect()
        self.logger.info("Policy service stopped")


def create_app():
    """Create policy service application."""
    service = PolicyService()
    return service.app


def main():
    """Run the policy service."""
    service = PolicyService()
    service.run()


if __name__ == "__main__":
    main()
