"""
Cache package for the Policy Service.

Provides a Redis-backed cache of per-tenant policy sets. The cache is an
accelerator only: the engine re-derives the built-in set on any miss.
"""
