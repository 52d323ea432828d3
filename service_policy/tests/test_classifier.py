"""
Unit tests for request classification.
"""

import pytest

from service_policy.app.policies.classifier import classify_request
from service_policy.app.policies.models import Action, PolicyCategory, Resource


@pytest.mark.parametrize(
    "action_id, resource_id, resource_type, expected",
    [
        ("read", "wi-1", "work_item", PolicyCategory.WORK_ITEM_ACCESS),
        ("update", "/api/work-items/42", "document", PolicyCategory.WORK_ITEM_ACCESS),
        ("admin", "/api/work-items/42", "document", PolicyCategory.WORK_ITEM_ACCESS),
        ("admin", "settings", "config", PolicyCategory.ADMIN_ACCESS),
        ("read", "/api/admin/users", "user", PolicyCategory.ADMIN_ACCESS),
        ("create", "doc-1", "document", PolicyCategory.DEFAULT_ALLOW),
        ("read", "/api/reports", "report", PolicyCategory.DEFAULT_ALLOW),
    ],
)
def test_classify_request(action_id, resource_id, resource_type, expected):
    """First matching category wins."""
    category = classify_request(Action(id=action_id), Resource(id=resource_id, type=resource_type))

    assert category == expected


def test_create_work_item_is_work_item_access():
    """Work-item access is tested before lineage enforcement."""
    category = classify_request(Action(id="create"), Resource(id="wi-9", type="work_item"))

    assert category == PolicyCategory.WORK_ITEM_ACCESS


def test_matching_is_case_sensitive():
    """Type and path matching use exact strings."""
    category = classify_request(Action(id="Admin"), Resource(id="/API/Work-Items", type="Work_Item"))

    assert category == PolicyCategory.DEFAULT_ALLOW
