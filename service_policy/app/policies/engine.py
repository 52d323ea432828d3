"""
Policy evaluation engine for the Policy Service.
"""

import asyncio
import time
import uuid
import weakref
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Union

from shared.logging import get_logger

from .classifier import WORK_ITEM_TYPE, classify_request
from .defaults import ADMIN_ROLES, BUILTIN_POLICIES, MANAGEMENT_ROLES, ROOT_CREATOR_ROLES
from .models import (
    ERROR_FALLBACK_POLICY_ID, Action, EvaluationResult, Policy, PolicyCategory,
    PolicyDraft, Principal, RequestContext, Resource, utcnow
)

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..cache.redis_cache import PolicyCache


class PolicyEngine:
    """Tenant-scoped policy engine.

    Decisions are computed in memory from the classifier and the rule
    methods below. The cache only stores each tenant's policy set; reads
    that fail there fall back to the built-in table, while writes issued
    by ``create_policy``/``delete_policy`` propagate cache failures.
    """

    def __init__(
        self,
        cache: "PolicyCache",
        builtin_policies: Mapping[str, Policy] = BUILTIN_POLICIES,
        logger=None,
    ):
        self.cache = cache
        self.builtin_policies = builtin_policies
        self.logger = logger or get_logger("policy.engine")
        self._tenant_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._rules = {
            PolicyCategory.WORK_ITEM_ACCESS: self._evaluate_work_item_access,
            PolicyCategory.ADMIN_ACCESS: self._evaluate_admin_access,
            PolicyCategory.LINEAGE_ENFORCEMENT: self._evaluate_lineage_enforcement,
            PolicyCategory.DEFAULT_ALLOW: self._evaluate_default,
        }

    def evaluate_policy(
        self,
        principal: Principal,
        action: Action,
        resource: Resource,
        context: Optional[RequestContext] = None,
    ) -> EvaluationResult:
        """Decide whether ``principal`` may perform ``action`` on ``resource``.

        Never raises: any error during classification or rule evaluation
        yields a deny under the ``error-fallback`` policy id.
        """
        start_time = time.time()

        try:
            category = classify_request(action, resource)
            result = self._rules[category](principal, action, resource)
        except Exception as e:
            self.logger.error(
                "Policy evaluation failed",
                error=str(e),
                principal=principal.id,
                action=action.id,
                resource=resource.id,
            )
            return EvaluationResult(
                allowed=False,
                policy_id=ERROR_FALLBACK_POLICY_ID,
                metadata={"error": "Policy evaluation failed"},
            )

        self.logger.info(
            "Policy evaluation completed",
            principal=principal.id,
            action=action.id,
            resource=resource.id,
            tenant_id=principal.tenant_id,
            request_id=context.request_id if context else None,
            allowed=result.allowed,
            policy_id=result.policy_id,
            evaluation_time_ms=round((time.time() - start_time) * 1000, 3),
        )
        return result

    def _evaluate_work_item_access(self, principal: Principal, action: Action,
                                   resource: Resource) -> EvaluationResult:
        policy_id = PolicyCategory.WORK_ITEM_ACCESS.value

        if action.id == "read":
            return self._result(True, policy_id, "Read access allowed for same tenant")

        # Creating a work item is governed by lineage enforcement; other creates are denied here.
        if action.id == "create" and resource.type == WORK_ITEM_TYPE:
            return self._evaluate_lineage_enforcement(principal, action, resource)

        if action.id in ("update", "delete"):
            if principal.has_any_role(MANAGEMENT_ROLES):
                return self._result(True, policy_id, "Management role has update/delete access")

            # Ownership is not checked; any role-bearing principal passes.
            if principal.roles:
                return self._result(True, policy_id, "Authenticated user with roles has access")

        return self._result(False, policy_id, "Access denied by work item policy")

    def _evaluate_admin_access(self, principal: Principal, action: Action,
                               resource: Resource) -> EvaluationResult:
        policy_id = PolicyCategory.ADMIN_ACCESS.value

        if principal.has_any_role(ADMIN_ROLES):
            return self._result(True, policy_id, "Admin role has administrative access")

        return self._result(False, policy_id, "Admin access denied - insufficient privileges")

    def _evaluate_lineage_enforcement(self, principal: Principal, action: Action,
                                      resource: Resource) -> EvaluationResult:
        policy_id = PolicyCategory.LINEAGE_ENFORCEMENT.value

        if principal.has_any_role(ROOT_CREATOR_ROLES):
            return self._result(True, policy_id, "CEO/President can create root items")

        self.logger.info(
            "Lineage enforcement check",
            principal=principal.id,
            action=action.id,
            resource=resource.id,
            message="Parent ID should be validated for non-executive users",
        )
        return self._result(True, policy_id, "Creation allowed, parent ID validation required")

    def _evaluate_default(self, principal: Principal, action: Action,
                          resource: Resource) -> EvaluationResult:
        return self._result(
            True,
            PolicyCategory.DEFAULT_ALLOW.value,
            "No specific policy found, defaulting to allow",
        )

    @staticmethod
    def _result(allowed: bool, policy_id: str, reason: str) -> EvaluationResult:
        return EvaluationResult(allowed=allowed, policy_id=policy_id, metadata={"reason": reason})

    def _builtins_for(self, tenant_id: str) -> List[Policy]:
        """Copies of the built-in policies bound to ``tenant_id``."""
        return [
            policy.model_copy(update={"tenant_id": tenant_id})
            for policy in self.builtin_policies.values()
        ]

    async def get_policies(self, tenant_id: str) -> List[Policy]:
        """Get the tenant's policy set, seeding the cache with built-ins on a miss."""
        try:
            cached_policies = await self.cache.get_policies(tenant_id)
            if cached_policies:
                return cached_policies

            default_policies = self._builtins_for(tenant_id)
            await self.cache.set_policies(tenant_id, default_policies)
            return default_policies

        except Exception as e:
            self.logger.error("Failed to get policies", error=str(e), tenant_id=tenant_id)
            return self._builtins_for(tenant_id)

    async def get_policy(self, tenant_id: str, policy_id: str) -> Optional[Policy]:
        """Get one policy of the tenant by id."""
        policy = await self.cache.get_policy(tenant_id, policy_id)
        if policy is not None:
            return policy

        for policy in await self.get_policies(tenant_id):
            if policy.id == policy_id:
                return policy
        return None

    async def create_policy(self, draft: Union[PolicyDraft, Mapping[str, Any]],
                            tenant_id: str) -> Dict[str, str]:
        """Create a policy for the tenant and persist the full policy list.

        Cache write failures propagate to the caller.
        """
        if not isinstance(draft, PolicyDraft):
            draft = PolicyDraft.model_validate(draft)

        async with self._tenant_lock(tenant_id):
            try:
                existing_policies = await self.get_policies(tenant_id)
                existing_ids = {policy.id for policy in existing_policies}

                policy_id = self._generate_policy_id()
                while policy_id in existing_ids:
                    policy_id = self._generate_policy_id()

                now = utcnow()
                new_policy = Policy(
                    id=policy_id,
                    tenant_id=tenant_id,
                    created_at=now,
                    updated_at=now,
                    **draft.model_dump(),
                )

                await self.cache.set_policies(
                    tenant_id, [*existing_policies, new_policy], raise_on_error=True
                )
            except Exception as e:
                self.logger.error("Failed to create policy", error=str(e), tenant_id=tenant_id)
                raise

            await self.cache.set_policy(tenant_id, new_policy)

        self.logger.info(
            "Policy created successfully",
            policy_id=new_policy.id,
            tenant_id=tenant_id,
            name=new_policy.name,
        )
        return {"policy_id": new_policy.id}

    async def delete_policy(self, tenant_id: str, policy_id: str) -> bool:
        """Remove a policy from the tenant's set. Returns False if it does not exist."""
        async with self._tenant_lock(tenant_id):
            try:
                existing_policies = await self.get_policies(tenant_id)
                remaining = [policy for policy in existing_policies if policy.id != policy_id]
                if len(remaining) == len(existing_policies):
                    return False

                await self.cache.set_policies(tenant_id, remaining, raise_on_error=True)
            except Exception as e:
                self.logger.error(
                    "Failed to delete policy", error=str(e), tenant_id=tenant_id, policy_id=policy_id
                )
                raise

            await self.cache.delete_policy(tenant_id, policy_id)

        self.logger.info("Policy deleted", policy_id=policy_id, tenant_id=tenant_id)
        return True

    def is_healthy(self) -> bool:
        """Check if the engine is healthy."""
        try:
            return len(self.builtin_policies) > 0
        except Exception as e:
            self.logger.error("Health check failed", error=str(e))
            return False

    def _tenant_lock(self, tenant_id: str) -> asyncio.Lock:
        """Per-tenant lock serialising read-modify-write of the policy list.

        Locks are held weakly and disappear once no writer or waiter holds them.
        """
        lock = self._tenant_locks.get(tenant_id)
        if lock is None:
            lock = asyncio.Lock()
            self._tenant_locks[tenant_id] = lock
        return lock

    @staticmethod
    def _generate_policy_id() -> str:
        return f"policy_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"

    def get_engine_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        return {
            "builtin_policies": len(self.builtin_policies),
            "builtin_policy_ids": list(self.builtin_policies.keys()),
            "categories": [category.value for category in PolicyCategory],
            "tenants_with_write_locks": len(self._tenant_locks),
        }
