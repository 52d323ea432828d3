"""
Built-in policy table.

The table is built once at import time and exposed read-only. It is the
fallback policy set for every tenant without cached policies; the engine
receives it by reference and never mutates it.
"""

from types import MappingProxyType
from typing import Dict, Mapping

from .models import Policy, PolicyCategory

BUILTIN_TENANT_ID = "default"

MANAGEMENT_ROLES = frozenset({"Manager", "Director", "VP", "President", "CEO", "Admin"})
ADMIN_ROLES = frozenset({"Admin", "CEO", "President"})
ROOT_CREATOR_ROLES = frozenset({"CEO", "President"})


_WORK_ITEM_ACCESS_TEXT = """
permit(principal, action == Action::"read", resource in WorkItem)
  when { principal.tenant_id == resource.tenant_id };

permit(principal, action in [Action::"update", Action::"delete"], resource in WorkItem)
  when {
    principal.tenant_id == resource.tenant_id &&
    (principal.id == resource.owner_id ||
     principal.roles.containsAny(["Manager", "Director", "VP", "President", "CEO"]))
  };
"""

_LINEAGE_ENFORCEMENT_TEXT = """
permit(principal, action == Action::"create", resource in WorkItem)
  when {
    resource.type in ["strategy", "initiative", "task", "subtask"] &&
    principal.roles.containsAny(["CEO", "President"])
  };

permit(principal, action == Action::"create", resource in WorkItem)
  when {
    resource.type in ["strategy", "initiative", "task", "subtask"] &&
    resource.parent_id != null
  };

permit(principal, action == Action::"create", resource in WorkItem)
  when { resource.type == "objective" };
"""

_ADMIN_ACCESS_TEXT = """
permit(principal, action == Action::"admin", resource in AdminResource)
  when {
    principal.tenant_id == resource.tenant_id &&
    principal.roles.containsAny(["Admin", "CEO", "President"])
  };
"""


def build_builtin_policies() -> Mapping[str, Policy]:
    """Build the read-only id -> Policy table of built-in policies."""
    policies = [
        Policy(
            id=PolicyCategory.WORK_ITEM_ACCESS.value,
            name="Work Item Access Control",
            description="Controls who can read, update, and delete work items",
            tenant_id=BUILTIN_TENANT_ID,
            policy_text=_WORK_ITEM_ACCESS_TEXT,
        ),
        Policy(
            id=PolicyCategory.LINEAGE_ENFORCEMENT.value,
            name="Lineage Enforcement",
            description="Work items must have a parent unless created by CEO or President",
            tenant_id=BUILTIN_TENANT_ID,
            policy_text=_LINEAGE_ENFORCEMENT_TEXT,
        ),
        Policy(
            id=PolicyCategory.ADMIN_ACCESS.value,
            name="Admin Access Control",
            description="Controls access to administrative functions",
            tenant_id=BUILTIN_TENANT_ID,
            policy_text=_ADMIN_ACCESS_TEXT,
        ),
    ]
    table: Dict[str, Policy] = {policy.id: policy for policy in policies}
    return MappingProxyType(table)


BUILTIN_POLICIES: Mapping[str, Policy] = build_builtin_policies()
