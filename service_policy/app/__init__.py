"""
Policy Service package.

Decides whether a principal may perform an action on a resource within a
tenant. It provides:

- app.main: API surface for evaluation, policy management, cache and health.
- app.policies: Data model, built-in policy table, classifier and engine.
- app.cache: Redis-backed, best-effort store of per-tenant policy sets.
- app.health: Composition of engine and cache health.

Guidelines:
- Evaluation is in-memory and never touches the cache.
- Cache reads fall back to the built-in policies; engine errors deny.
- Policies never cross tenant boundaries.
"""
