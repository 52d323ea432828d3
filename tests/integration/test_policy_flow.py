"""
Integration tests for the policy decision flow.
"""

import asyncio

import httpx
import pytest
import pytest_asyncio

from service_policy.app.main import PolicyService
from shared.test_helpers import InMemoryPolicyCache, TestDataFactory


class TestPolicyFlow:
    """End-to-end flows through the HTTP boundary with an in-process cache."""

    @pytest.fixture
    def cache(self):
        return InMemoryPolicyCache(yield_on_io=True)

    @pytest.fixture
    def service(self, cache):
        return PolicyService(cache=cache)

    @pytest_asyncio.fixture
    async def client(self, service):
        transport = httpx.ASGITransport(app=service.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://policy") as client:
            yield client

    @pytest.fixture
    def principals(self):
        return {p.principal_id: p for p in TestDataFactory.create_test_principals()}

    @pytest.mark.asyncio
    async def test_complete_policy_lifecycle(self, client):
        """Seed, create, fetch, delete and re-list a tenant's policies."""
        # 1. First read seeds the built-ins
        listed = (await client.get("/policies", params={"tenant_id": "tenant-1"})).json()
        assert listed["count"] == 3
        assert all(p["tenant_id"] == "tenant-1" for p in listed["policies"])

        # 2. Create a custom policy
        created = await client.post(
            "/policies",
            json={"policy": TestDataFactory.create_policy_draft("Flow Policy"), "tenant_id": "tenant-1"},
        )
        assert created.status_code == 201
        policy_id = created.json()["policy_id"]

        # 3. It is listed after the built-ins and retrievable by id
        listed = (await client.get("/policies", params={"tenant_id": "tenant-1"})).json()
        assert listed["count"] == 4
        assert listed["policies"][-1]["id"] == policy_id
        fetched = await client.get(f"/policies/{policy_id}", params={"tenant_id": "tenant-1"})
        assert fetched.json()["policy"]["name"] == "Flow Policy"

        # 4. Other tenants never see it
        other = (await client.get("/policies", params={"tenant_id": "tenant-2"})).json()
        assert policy_id not in {p["id"] for p in other["policies"]}

        # 5. Delete and confirm
        deleted = await client.delete(f"/policies/{policy_id}", params={"tenant_id": "tenant-1"})
        assert deleted.status_code == 200
        missing = await client.get(f"/policies/{policy_id}", params={"tenant_id": "tenant-1"})
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_decisions_by_role(self, client, principals):
        """Each role band gets the expected decision and policy id."""
        cases = [
            (principals["anon-1"], "read", "wi-1", "work_item", True, "work-item-access"),
            (principals["anon-1"], "update", "wi-1", "work_item", False, "work-item-access"),
            (principals["user-1"], "delete", "wi-1", "work_item", True, "work-item-access"),
            (principals["user-1"], "create", "wi-2", "work_item", True, "lineage-enforcement"),
            (principals["ceo-1"], "create", "wi-3", "work_item", True, "lineage-enforcement"),
            (principals["ceo-1"], "create", "/api/work-items/42", "document", False, "work-item-access"),
            (principals["manager-1"], "admin", "settings", "config", False, "admin-access"),
            (principals["admin-2"], "read", "/api/admin/users", "user", True, "admin-access"),
            (principals["user-1"], "read", "/api/reports/1", "report", True, "default-allow"),
        ]

        for principal, action, resource_id, resource_type, allowed, policy_id in cases:
            body = TestDataFactory.create_evaluation_request(principal, action, resource_id, resource_type)
            data = (await client.post("/evaluate", json=body)).json()

            assert data["allowed"] is allowed, (principal.principal_id, action, resource_id)
            assert data["policy_id"] == policy_id, (principal.principal_id, action, resource_id)

    @pytest.mark.asyncio
    async def test_concurrent_creates_are_all_kept(self, client, cache):
        responses = await asyncio.gather(*[
            client.post(
                "/policies",
                json={"policy": TestDataFactory.create_policy_draft(f"p{i}"), "tenant_id": "tenant-1"},
            )
            for i in range(8)
        ])

        assert all(r.status_code == 201 for r in responses)
        listed = (await client.get("/policies", params={"tenant_id": "tenant-1"})).json()
        assert listed["count"] == 3 + 8

    @pytest.mark.asyncio
    async def test_cache_outage_keeps_serving(self, client, cache, principals):
        """Reads fall back to built-ins and decisions keep flowing while writes fail."""
        cache.fail_reads = True
        cache.fail_writes = True
        cache.healthy = False

        listed = await client.get("/policies", params={"tenant_id": "tenant-1"})
        assert listed.status_code == 200
        assert listed.json()["count"] == 3

        body = TestDataFactory.create_evaluation_request(principals["user-1"], "read", "wi-1", "work_item")
        evaluated = await client.post("/evaluate", json=body)
        assert evaluated.json()["allowed"] is True

        created = await client.post(
            "/policies",
            json={"policy": TestDataFactory.create_policy_draft(), "tenant_id": "tenant-1"},
        )
        assert created.status_code == 500
        assert created.json()["error"] == "CREATE_POLICY_FAILED"

        health = await client.get("/health")
        assert health.status_code == 503
        assert health.json()["services"]["policy_cache"] == "unhealthy"
