"""
Health aggregation for the Policy Service.
"""

import inspect
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict

from shared.logging import get_logger

HEALTHY = "healthy"
UNHEALTHY = "unhealthy"


@dataclass
class HealthReport:
    engine_healthy: bool
    cache_healthy: bool
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def healthy(self) -> bool:
        return self.engine_healthy and self.cache_healthy

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": HEALTHY if self.healthy else UNHEALTHY,
            "timestamp": self.checked_at.isoformat(),
            "services": {
                "policy_cache": HEALTHY if self.cache_healthy else UNHEALTHY,
                "cedar_engine": HEALTHY if self.engine_healthy else UNHEALTHY,
            },
        }


class HealthAggregator:
    """Combines engine and cache health; a failing probe counts as unhealthy."""

    def __init__(self, engine, cache):
        self.engine = engine
        self.cache = cache
        self.logger = get_logger("policy.health")

    async def check(self) -> HealthReport:
        return HealthReport(
            engine_healthy=await self._probe("cedar_engine", self.engine.is_healthy),
            cache_healthy=await self._probe("policy_cache", self.cache.is_healthy),
        )

    async def _probe(self, name: str, probe) -> bool:
        try:
            result = probe()
            if inspect.isawaitable(result):
                result = await result
            return bool(result)
        except Exception as e:
            self.logger.error("Health probe failed", subsystem=name, error=str(e))
            return False
