"""
Unit tests for health aggregation.
"""

from types import MappingProxyType
from unittest.mock import AsyncMock, MagicMock

import pytest

from service_policy.app.health import HealthAggregator
from service_policy.app.policies.engine import PolicyEngine
from shared.test_helpers import InMemoryPolicyCache


@pytest.mark.asyncio
async def test_all_healthy():
    cache = InMemoryPolicyCache()
    report = await HealthAggregator(PolicyEngine(cache), cache).check()

    assert report.healthy is True
    assert report.to_dict()["status"] == "healthy"
    assert report.to_dict()["services"] == {"policy_cache": "healthy", "cedar_engine": "healthy"}


@pytest.mark.asyncio
async def test_cache_down_is_unhealthy():
    cache = InMemoryPolicyCache(healthy=False)
    report = await HealthAggregator(PolicyEngine(cache), cache).check()

    assert report.healthy is False
    assert report.engine_healthy is True
    assert report.to_dict()["services"]["policy_cache"] == "unhealthy"


@pytest.mark.asyncio
async def test_empty_builtin_table_is_unhealthy():
    cache = InMemoryPolicyCache()
    engine = PolicyEngine(cache, builtin_policies=MappingProxyType({}))

    report = await HealthAggregator(engine, cache).check()

    assert report.healthy is False
    assert report.to_dict()["services"]["cedar_engine"] == "unhealthy"


@pytest.mark.asyncio
async def test_probe_exceptions_become_unhealthy():
    engine = MagicMock()
    engine.is_healthy.side_effect = RuntimeError("engine broken")
    cache = MagicMock()
    cache.is_healthy = AsyncMock(side_effect=ConnectionError("redis down"))

    report = await HealthAggregator(engine, cache).check()

    assert report.engine_healthy is False
    assert report.cache_healthy is False
    assert report.to_dict()["status"] == "unhealthy"
