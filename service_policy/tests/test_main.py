"""
Unit tests for the Policy service API.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from service_policy.app.main import PolicyService
from shared.errors import CacheError
from shared.test_helpers import InMemoryPolicyCache, TestDataFactory


class TestPolicyService:
    """Test cases for PolicyService."""

    @pytest.fixture
    def cache(self):
        return InMemoryPolicyCache()

    @pytest.fixture
    def service(self, cache):
        """Create PolicyService backed by an in-memory cache."""
        return PolicyService(cache=cache)

    @pytest.fixture
    def client(self, service):
        """Create test client."""
        return TestClient(service.app)

    @pytest.fixture
    def principals(self):
        return {p.principal_id: p for p in TestDataFactory.create_test_principals()}

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "policy"
        assert "evaluation" in data["capabilities"]

    def test_service_initialization(self, service, cache):
        assert service.service_name == "policy"
        assert service.port == 8013
        assert service.cache is cache
        assert service.engine.cache is cache
        assert service.health.engine is service.engine

    def test_evaluate_allowed(self, client, principals):
        body = TestDataFactory.create_evaluation_request(
            principals["manager-1"], "update", "wi-1", "work_item", request_id="req-42"
        )

        response = client.post("/evaluate", json=body)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["allowed"] is True
        assert data["policy_id"] == "work-item-access"
        assert data["request_id"] == "req-42"
        assert data["evaluation_time_ms"] >= 0
        assert data["metadata"]["reason"]

    def test_evaluate_denied(self, client, principals):
        body = TestDataFactory.create_evaluation_request(principals["manager-1"], "admin", "settings", "config")

        data = client.post("/evaluate", json=body).json()

        assert data["allowed"] is False
        assert data["policy_id"] == "admin-access"
        assert data["request_id"]

    def test_evaluate_request_id_from_header(self, client, principals):
        body = TestDataFactory.create_evaluation_request(principals["user-1"], "read", "wi-1", "work_item")

        response = client.post("/evaluate", json=body, headers={"X-Request-ID": "hdr-1"})

        assert response.json()["request_id"] == "hdr-1"
        assert response.headers["X-Request-ID"] == "hdr-1"

    @pytest.mark.parametrize("missing", ["principal", "action", "resource"])
    def test_evaluate_missing_required_fields(self, client, principals, missing):
        body = TestDataFactory.create_evaluation_request(principals["user-1"], "read", "wi-1", "work_item")
        del body[missing]

        response = client.post("/evaluate", json=body)

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["error"] == "MISSING_REQUIRED_FIELDS"
        assert data["request_id"]

    def test_evaluate_missing_tenant(self, client):
        body = {
            "principal": {"id": "user-1", "roles": ["User"]},
            "action": {"id": "read"},
            "resource": {"id": "wi-1", "type": "work_item"},
            "context": {"timestamp": "2026-01-01T00:00:00Z"},
        }

        response = client.post("/evaluate", json=body)

        assert response.status_code == 400
        assert response.json()["error"] == "MISSING_TENANT_ID"

    def test_evaluate_tenant_from_context(self, client):
        body = {
            "principal": {"id": "user-1", "roles": []},
            "action": {"id": "read"},
            "resource": {"id": "wi-1", "type": "work_item"},
            "context": {"tenant_id": "tenant-9"},
        }

        response = client.post("/evaluate", json=body)

        assert response.status_code == 200
        assert response.json()["allowed"] is True

    def test_evaluate_engine_failure(self, client, service, principals):
        body = TestDataFactory.create_evaluation_request(principals["user-1"], "read", "wi-1", "work_item")

        with patch.object(service.engine, "evaluate_policy", side_effect=RuntimeError("boom")):
            response = client.post("/evaluate", json=body)

        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "EVALUATION_FAILED"
        assert data["request_id"]

    def test_evaluate_error_fallback_is_deny(self, client, principals):
        body = TestDataFactory.create_evaluation_request(principals["ceo-1"], "read", "wi-1", "work_item")

        with patch("service_policy.app.policies.engine.classify_request", side_effect=RuntimeError("boom")):
            data = client.post("/evaluate", json=body).json()

        assert data["allowed"] is False
        assert data["policy_id"] == "error-fallback"

    def test_list_policies(self, client):
        response = client.get("/policies", params={"tenant_id": "tenant-1"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["count"] == 3
        assert {p["id"] for p in data["policies"]} == {
            "work-item-access", "lineage-enforcement", "admin-access"
        }

    def test_list_policies_missing_tenant(self, client):
        response = client.get("/policies")

        assert response.status_code == 400
        assert response.json()["error"] == "MISSING_TENANT_ID"

    def test_create_policy(self, client):
        response = client.post(
            "/policies",
            json={"policy": TestDataFactory.create_policy_draft(), "tenant_id": "tenant-1"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        policy_id = data["policy_id"]

        listed = client.get("/policies", params={"tenant_id": "tenant-1"}).json()
        assert listed["count"] == 4
        fetched = client.get(f"/policies/{policy_id}", params={"tenant_id": "tenant-1"}).json()
        assert fetched["policy"]["name"] == "Custom Policy"

    @pytest.mark.parametrize("body", [{"tenant_id": "tenant-1"}, {"policy": {"name": "x"}}, {}])
    def test_create_policy_missing_fields(self, client, body):
        response = client.post("/policies", json=body)

        assert response.status_code == 400
        assert response.json()["error"] == "MISSING_REQUIRED_FIELDS"

    def test_evaluate_malformed_parts(self, client):
        body = {
            "principal": {"tenant_id": "tenant-1", "roles": ["User"]},
            "action": {"id": "read"},
            "resource": {"type": "work_item"},
        }

        response = client.post("/evaluate", json=body, headers={"X-Request-ID": "bad-1"})

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["error"] == "MISSING_REQUIRED_FIELDS"
        assert data["request_id"] == "bad-1"
        assert "principal.id" in data["details"]["fields"]
        assert "resource.id" in data["details"]["fields"]
        assert response.headers["X-Request-ID"] == "bad-1"

    def test_create_policy_without_name(self, client):
        body = {"policy": {"description": "no name"}, "tenant_id": "tenant-1"}

        response = client.post("/policies", json=body)

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "MISSING_REQUIRED_FIELDS"
        assert data["request_id"]
        assert "policy.name" in data["details"]["fields"]

    def test_create_policy_cache_failure(self, client, cache):
        cache.fail_writes = True

        response = client.post(
            "/policies",
            json={"policy": TestDataFactory.create_policy_draft(), "tenant_id": "tenant-1"},
        )

        assert response.status_code == 500
        assert response.json()["error"] == "CREATE_POLICY_FAILED"

    def test_get_policy_not_found(self, client):
        response = client.get("/policies/missing", params={"tenant_id": "tenant-1"})

        assert response.status_code == 404
        assert response.json()["error"] == "POLICY_NOT_FOUND"

    def test_delete_policy(self, client):
        created = client.post(
            "/policies",
            json={"policy": TestDataFactory.create_policy_draft(), "tenant_id": "tenant-1"},
        ).json()

        response = client.delete(f"/policies/{created['policy_id']}", params={"tenant_id": "tenant-1"})
        assert response.status_code == 200

        again = client.delete(f"/policies/{created['policy_id']}", params={"tenant_id": "tenant-1"})
        assert again.status_code == 404

    def test_cache_endpoints(self, client):
        client.get("/policies", params={"tenant_id": "tenant-1"})

        stats = client.get("/cache/stats").json()
        assert stats["cache"]["tenant_count"] == 1
        assert stats["engine"]["builtin_policies"] == 3

        refreshed = client.post("/cache/refresh", params={"tenant_id": "tenant-1"}).json()
        assert refreshed["refreshed"] is True

        cleared = client.delete("/cache", params={"tenant_id": "tenant-1"}).json()
        assert cleared["keys_cleared"] == 1

        assert client.post("/cache/refresh").status_code == 400

    def test_health_endpoint(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["services"] == {"policy_cache": "healthy", "cedar_engine": "healthy"}

    def test_health_endpoint_cache_down(self, client, cache):
        cache.healthy = False

        response = client.get("/health")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "unhealthy"
        assert data["services"]["policy_cache"] == "unhealthy"
        assert data["services"]["cedar_engine"] == "healthy"

    def test_health_endpoint_check_failure(self, client, service):
        with patch.object(service.health, "check", side_effect=RuntimeError("boom")):
            response = client.get("/health")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "unhealthy"
        assert data["error"] == "HEALTH_CHECK_FAILED"

    def test_metrics_endpoint(self, client, principals):
        body = TestDataFactory.create_evaluation_request(principals["user-1"], "read", "wi-1", "work_item")
        client.post("/evaluate", json=body)

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "policy_evaluations_total" in response.text

    def test_lifespan_survives_cache_outage(self, cache):
        service = PolicyService(cache=cache)

        with patch.object(cache, "connect", AsyncMock(side_effect=CacheError("CACHE_CONNECT_FAILED", "refused"))):
            with TestClient(service.app) as client:
                response = client.get("/policies", params={"tenant_id": "tenant-1"})

        assert response.status_code == 200
        assert response.json()["count"] == 3
