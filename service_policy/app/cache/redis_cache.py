"""
Redis caching layer for the Policy Service.
"""

import json
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

import redis.asyncio as redis

from shared.errors import CacheError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..policies.models import Policy

# Characters that would let a tenant id widen a key pattern or forge a key segment.
_FORBIDDEN_TENANT_CHARS = frozenset(":*?[]\\")


@dataclass
class CacheStats:
    """Approximate cache statistics."""
    total_keys: int = 0
    memory_usage: str = "unknown"
    tenant_count: int = 0
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PolicyCache:
    """Best-effort Redis store of per-tenant policy sets.

    Reads never raise: errors are logged and a safe default is returned.
    ``set_policies`` swallows errors too unless called with
    ``raise_on_error=True``.
    """

    def __init__(
        self,
        redis_url: str,
        ttl_seconds: int = 300,
        key_prefix: str = "cedar_policy",
        socket_timeout: float = 5.0,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix
        self.socket_timeout = socket_timeout
        self.metrics = metrics
        self.logger = get_logger("policy.cache.redis")
        self.redis: Optional[redis.Redis] = None

        self._hits = 0
        self._misses = 0

    async def connect(self):
        """Connect to Redis and verify the connection."""
        client = redis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=self.socket_timeout,
            socket_timeout=self.socket_timeout,
            health_check_interval=30
        )
        try:
            await client.ping()
        except Exception as e:
            await client.aclose()
            self.logger.error("Failed to connect to Redis", error=str(e))
            raise CacheError("CACHE_CONNECT_FAILED", "Failed to connect to Redis", {"error": str(e)})

        self.redis = client
        self.logger.info("Policy cache connected to Redis")

    async def disconnect(self):
        """Disconnect from Redis."""
        client, self.redis = self.redis, None
        if client is None:
            return
        try:
            await client.aclose()
            self.logger.info("Policy cache disconnected from Redis")
        except Exception as e:
            self.logger.error("Failed to disconnect from Redis", error=str(e))

    async def __aenter__(self) -> "PolicyCache":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    def _client(self) -> redis.Redis:
        if self.redis is None:
            raise CacheError("CACHE_NOT_CONNECTED", "Policy cache is not connected")
        return self.redis

    def _tenant_segment(self, tenant_id: str) -> str:
        if not tenant_id or _FORBIDDEN_TENANT_CHARS.intersection(tenant_id):
            raise CacheError("INVALID_TENANT_ID", "Tenant ID is not usable as a cache key",
                             {"tenant_id": tenant_id})
        return tenant_id

    def _policies_key(self, tenant_id: str) -> str:
        return f"{self.key_prefix}:{self._tenant_segment(tenant_id)}:policies"

    def _policy_key(self, tenant_id: str, policy_id: str) -> str:
        return f"{self.key_prefix}:{self._tenant_segment(tenant_id)}:policy:{policy_id}"

    def _record(self, operation: str, result: str):
        if self.metrics:
            self.metrics.record_cache_operation(operation, result)

    def _record_lookup(self, operation: str, hit: bool):
        if hit:
            self._hits += 1
        else:
            self._misses += 1
        self._record(operation, "hit" if hit else "miss")

    async def get_policies(self, tenant_id: str) -> List[Policy]:
        """Get cached policies for a tenant, or an empty list."""
        try:
            cached_data = await self._client().get(self._policies_key(tenant_id))

            if not cached_data:
                self._record_lookup("get_policies", hit=False)
                self.logger.debug("No cached policies found", tenant_id=tenant_id)
                return []

            policies = [Policy.model_validate(item) for item in json.loads(cached_data)]
            self._record_lookup("get_policies", hit=True)
            self.logger.debug("Policies retrieved from cache", tenant_id=tenant_id, count=len(policies))
            return policies

        except Exception as e:
            self._record("get_policies", "error")
            self.logger.error("Failed to get policies from cache", error=str(e), tenant_id=tenant_id)
            return []

    async def set_policies(self, tenant_id: str, policies: List[Policy], *,
                           raise_on_error: bool = False) -> bool:
        """Replace the tenant's cached policy list."""
        try:
            data = json.dumps([policy.model_dump(mode="json") for policy in policies])
            await self._client().setex(self._policies_key(tenant_id), self.ttl_seconds, data)

            self._record("set_policies", "ok")
            self.logger.debug(
                "Policies cached successfully",
                tenant_id=tenant_id,
                count=len(policies),
                ttl=self.ttl_seconds
            )
            return True

        except Exception as e:
            self._record("set_policies", "error")
            self.logger.error("Failed to cache policies", error=str(e), tenant_id=tenant_id)
            if raise_on_error:
                if isinstance(e, CacheError):
                    raise
                raise CacheError("CACHE_WRITE_FAILED", "Failed to persist policies",
                                 {"tenant_id": tenant_id, "error": str(e)}) from e
            return False

    async def get_policy(self, tenant_id: str, policy_id: str) -> Optional[Policy]:
        """Get a cached policy by ID."""
        try:
            cached_data = await self._client().get(self._policy_key(tenant_id, policy_id))

            if not cached_data:
                self._record_lookup("get_policy", hit=False)
                self.logger.debug("Policy not found in cache", tenant_id=tenant_id, policy_id=policy_id)
                return None

            self._record_lookup("get_policy", hit=True)
            return Policy.model_validate_json(cached_data)

        except Exception as e:
            self._record("get_policy", "error")
            self.logger.error(
                "Failed to get policy from cache", error=str(e), tenant_id=tenant_id, policy_id=policy_id
            )
            return None

    async def set_policy(self, tenant_id: str, policy: Policy) -> bool:
        """Cache a single policy."""
        try:
            await self._client().setex(
                self._policy_key(tenant_id, policy.id),
                self.ttl_seconds,
                policy.model_dump_json()
            )
            self._record("set_policy", "ok")
            self.logger.debug("Policy cached successfully", tenant_id=tenant_id, policy_id=policy.id)
            return True

        except Exception as e:
            self._record("set_policy", "error")
            self.logger.error("Failed to cache policy", error=str(e), tenant_id=tenant_id, policy_id=policy.id)
            return False

    async def delete_policy(self, tenant_id: str, policy_id: str) -> bool:
        """Delete a single cached policy."""
        try:
            await self._client().delete(self._policy_key(tenant_id, policy_id))
            self._record("delete_policy", "ok")
            self.logger.debug("Policy deleted from cache", tenant_id=tenant_id, policy_id=policy_id)
            return True

        except Exception as e:
            self._record("delete_policy", "error")
            self.logger.error(
                "Failed to delete policy from cache", error=str(e), tenant_id=tenant_id, policy_id=policy_id
            )
            return False

    async def clear_policies(self, tenant_id: str) -> int:
        """Delete every cached key of a tenant. Returns the number of keys removed."""
        try:
            client = self._client()
            pattern = f"{self.key_prefix}:{self._tenant_segment(tenant_id)}:*"
            keys = [key async for key in client.scan_iter(match=pattern)]

            if keys:
                await client.delete(*keys)
                self.logger.info("All policies cleared for tenant", tenant_id=tenant_id, keys_cleared=len(keys))

            self._record("clear_policies", "ok")
            return len(keys)

        except Exception as e:
            self._record("clear_policies", "error")
            self.logger.error("Failed to clear policies for tenant", error=str(e), tenant_id=tenant_id)
            return 0

    async def get_cache_stats(self) -> CacheStats:
        """Get approximate cache statistics."""
        stats = CacheStats(hits=self._hits, misses=self._misses, hit_rate=self._calculate_hit_rate())
        try:
            client = self._client()
            info = await client.info("memory")
            prefix = f"{self.key_prefix}:"
            keys = [key async for key in client.scan_iter(match=f"{prefix}*")]

            # The prefix may itself contain ":"; the tenant is the first segment after it.
            tenant_ids = {
                key[len(prefix):].split(":", 1)[0]
                for key in keys
                if key.startswith(prefix) and len(key) > len(prefix)
            }

            stats.total_keys = len(keys)
            stats.memory_usage = str(info.get("used_memory_human", "unknown"))
            stats.tenant_count = len(tenant_ids)

            if self.metrics:
                self.metrics.set_gauge("policy_cache_tenants", stats.tenant_count)

        except Exception as e:
            self.logger.error("Failed to get cache statistics", error=str(e))

        return stats

    async def is_healthy(self) -> bool:
        """Check Redis connectivity."""
        try:
            await self._client().ping()
            return True
        except Exception as e:
            self.logger.error("Cache health check failed", error=str(e))
            return False

    async def refresh_cache_ttl(self, tenant_id: str) -> bool:
        """Extend the expiry of the tenant's policy list if it exists."""
        try:
            client = self._client()
            key = self._policies_key(tenant_id)

            if not await client.exists(key):
                return False

            await client.expire(key, self.ttl_seconds)
            self.logger.debug("Cache TTL refreshed", tenant_id=tenant_id, ttl=self.ttl_seconds)
            return True

        except Exception as e:
            self.logger.error("Failed to refresh cache TTL", error=str(e), tenant_id=tenant_id)
            return False

    def _calculate_hit_rate(self) -> float:
        total = self._hits + self._misses
        if total == 0:
            return 0.0
        return self._hits / total
