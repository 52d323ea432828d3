"""
Policy data models for the Policy Service.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PolicyCategory(str, Enum):
    """Decision category a request is classified into."""
    WORK_ITEM_ACCESS = "work-item-access"
    ADMIN_ACCESS = "admin-access"
    LINEAGE_ENFORCEMENT = "lineage-enforcement"
    DEFAULT_ALLOW = "default-allow"


ERROR_FALLBACK_POLICY_ID = "error-fallback"


@dataclass(frozen=True)
class Principal:
    """Authenticated actor requesting access."""
    id: str
    tenant_id: str
    roles: FrozenSet[str] = frozenset()
    email: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def has_any_role(self, roles) -> bool:
        return not self.roles.isdisjoint(roles)


@dataclass(frozen=True)
class Action:
    """Verb being requested, e.g. read, update, delete, create, admin."""
    id: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Resource:
    """Target of the action. ``id`` may be a path such as ``/api/work-items/42``."""
    id: str
    type: str
    tenant_id: Optional[str] = None
    owner_id: Optional[str] = None
    parent_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RequestContext:
    """Request-scoped evaluation context."""
    tenant_id: str
    timestamp: datetime = field(default_factory=utcnow)
    request_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class EvaluationResult:
    """Result of a policy evaluation."""
    allowed: bool
    policy_id: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    explanation: Optional[str] = None

    @property
    def reason(self) -> Optional[str]:
        return self.metadata.get("reason")


class Policy(BaseModel):
    """Named rule bound to one tenant and one decision category."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    tenant_id: str
    policy_text: str = ""
    version: str = "1.0.0"
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    metadata: Optional[Dict[str, Any]] = None


class PolicyDraft(BaseModel):
    """Caller-supplied fields of a new policy; id, tenant and timestamps are stamped by the engine."""
    name: str = Field(..., min_length=1, description="Policy name")
    description: str = Field("", description="Policy description")
    policy_text: str = Field("", description="Descriptive policy source; not interpreted")
    version: str = Field("1.0.0", description="Policy version")
    is_active: bool = Field(True, description="Whether the policy is active")
    metadata: Optional[Dict[str, Any]] = Field(None, description="Free-form metadata")


# HTTP payloads

class PrincipalPayload(BaseModel):
    id: str
    tenant_id: Optional[str] = None
    roles: List[str] = Field(default_factory=list)
    email: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class ActionPayload(BaseModel):
    id: str
    metadata: Optional[Dict[str, Any]] = None


class ResourcePayload(BaseModel):
    id: str
    type: str
    tenant_id: Optional[str] = None
    owner_id: Optional[str] = None
    parent_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class ContextPayload(BaseModel):
    tenant_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    request_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class EvaluateRequest(BaseModel):
    """Request model for a policy evaluation.

    Top-level parts are optional so that their absence is reported as
    ``MISSING_REQUIRED_FIELDS`` rather than a schema error.
    """
    principal: Optional[PrincipalPayload] = None
    action: Optional[ActionPayload] = None
    resource: Optional[ResourcePayload] = None
    context: Optional[ContextPayload] = None

    def tenant_id(self) -> Optional[str]:
        if self.principal and self.principal.tenant_id:
            return self.principal.tenant_id
        if self.context and self.context.tenant_id:
            return self.context.tenant_id
        return None

    def to_domain(self, tenant_id: str, request_id: Optional[str]):
        """Convert to (Principal, Action, Resource, RequestContext)."""
        principal = Principal(
            id=self.principal.id,
            tenant_id=tenant_id,
            roles=frozenset(self.principal.roles),
            email=self.principal.email,
            metadata=self.principal.metadata or {},
        )
        action = Action(id=self.action.id, metadata=self.action.metadata or {})
        resource = Resource(
            id=self.resource.id,
            type=self.resource.type,
            tenant_id=self.resource.tenant_id,
            owner_id=self.resource.owner_id,
            parent_id=self.resource.parent_id,
            metadata=self.resource.metadata or {},
        )
        ctx = self.context or ContextPayload()
        context = RequestContext(
            tenant_id=ctx.tenant_id or tenant_id,
            timestamp=ctx.timestamp or utcnow(),
            request_id=request_id,
            metadata=ctx.metadata or {},
        )
        return principal, action, resource, context


class EvaluateResponse(BaseModel):
    success: bool = True
    allowed: bool
    policy_id: str
    evaluation_time_ms: float
    request_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CreatePolicyRequest(BaseModel):
    policy: Optional[PolicyDraft] = None
    tenant_id: Optional[str] = None


class PolicyListResponse(BaseModel):
    success: bool = True
    policies: List[Policy]
    count: int
