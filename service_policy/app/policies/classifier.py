"""
Request classification.

Maps an (action, resource) pair onto exactly one decision category. Tests
run in order and the first match wins, so ``create`` on a ``work_item``
resource lands in work-item access; the engine's work-item rules hand
creation over to lineage enforcement.
"""

from .models import Action, PolicyCategory, Resource

WORK_ITEM_TYPE = "work_item"
WORK_ITEM_PATH = "/work-items"
ADMIN_ACTION = "admin"
ADMIN_PATH = "/admin"
CREATE_ACTION = "create"


def classify_request(action: Action, resource: Resource) -> PolicyCategory:
    """Return the decision category for the request."""
    if resource.type == WORK_ITEM_TYPE or WORK_ITEM_PATH in resource.id:
        return PolicyCategory.WORK_ITEM_ACCESS

    if action.id == ADMIN_ACTION or ADMIN_PATH in resource.id:
        return PolicyCategory.ADMIN_ACCESS

    if action.id == CREATE_ACTION and resource.type == WORK_ITEM_TYPE:
        return PolicyCategory.LINEAGE_ENFORCEMENT

    return PolicyCategory.DEFAULT_ALLOW
