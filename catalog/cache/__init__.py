"""
Catalog Caching Layer

Redis sits in front of the relational store as a read-through cache:
- Reads check Redis first and fall back to the store on a miss
- Writes commit to the store, then invalidate affected keys
- Redis failures degrade to store-only reads

Key components:
- RedisCache: get/set/delete over Redis with health probe and circuit breaker
- CircuitBreaker: error-rate breaker with call timeout and cooldown
- CacheInvalidator: event-driven invalidation with background retry
- keys: cache key templates shared with other services

Usage:
    cache = RedisCache()
    await cache.initialize()

    await cache.set("product:42", data, CacheTTL.PRODUCT)
    data = await cache.get("product:42")

    invalidator = CacheInvalidator(cache)
    await invalidator.handle_event(CacheEvent.PRODUCT_CREATED, product_id="42")

    await cache.close()
"""

from catalog.cache.config import CacheConfig, CacheTTL, get_cache_config
from catalog.cache.errors import BackendUnavailable
from catalog.cache.breaker import CircuitBreaker, CircuitState
from catalog.cache.redis_cache import RedisCache, CacheStats
from catalog.cache.invalidation import (
    CacheInvalidator,
    CacheEvent,
    InvalidationResult,
)

__all__ = [
    # Config
    "CacheConfig",
    "CacheTTL",
    "get_cache_config",
    # Errors
    "BackendUnavailable",
    # Breaker
    "CircuitBreaker",
    "CircuitState",
    # Redis
    "RedisCache",
    "CacheStats",
    # Invalidation
    "CacheInvalidator",
    "CacheEvent",
    "InvalidationResult",
]
