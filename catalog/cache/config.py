"""
Cache Configuration

Centralized configuration for the caching layer.
TTLs are per entity shape; breaker and health settings protect callers
when Redis is slow or down.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional
from functools import lru_cache


@dataclass(frozen=True)
class CacheTTL:
    """
    Cache TTL configuration by entity shape.

    Product lists change whenever a product or review is written, so they
    expire quickly. Single entities and child collections are invalidated
    explicitly on writes and can live longer.
    """

    # Paginated product lists
    PRODUCT_LIST: timedelta = timedelta(minutes=5)

    # Single product (includes the average rating aggregate)
    PRODUCT: timedelta = timedelta(hours=1)

    # Categories rarely change
    CATEGORY: timedelta = timedelta(hours=1)

    # Child collections
    REVIEWS: timedelta = timedelta(minutes=30)
    VARIANTS: timedelta = timedelta(minutes=30)


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


def _env_int(name: str, default: str) -> int:
    return int(os.getenv(name, default))


@dataclass
class CacheConfig:
    """
    Main cache configuration.

    Settings can be overridden via environment variables:
    - CACHE_ENABLED: Enable/disable caching globally
    - REDIS_URL or REDIS_HOST/REDIS_PORT/REDIS_PASSWORD/REDIS_DB: Connection
    - CACHE_CALL_TIMEOUT, CACHE_ERROR_THRESHOLD, CACHE_ROLLING_WINDOW,
      CACHE_MINIMUM_CALLS, CACHE_COOLDOWN: Circuit breaker
    - CACHE_NEGATIVE_TTL: Seconds to remember "not found" (0 disables)
    """

    # Global cache toggle
    enabled: bool = field(default_factory=lambda: os.getenv(
        "CACHE_ENABLED",
        "true"
    ).lower() == "true")

    # Connection
    redis_url: Optional[str] = field(default_factory=lambda: os.getenv("REDIS_URL"))
    redis_host: str = field(default_factory=lambda: os.getenv("REDIS_HOST", "localhost"))
    redis_port: int = field(default_factory=lambda: _env_int("REDIS_PORT", "6379"))
    redis_password: Optional[str] = field(default_factory=lambda: os.getenv("REDIS_PASSWORD"))
    redis_db: int = field(default_factory=lambda: _env_int("REDIS_DB", "0"))
    redis_max_connections: int = field(default_factory=lambda: _env_int(
        "REDIS_MAX_CONNECTIONS",
        "50"
    ))
    redis_connect_timeout: float = field(default_factory=lambda: _env_float(
        "REDIS_CONNECT_TIMEOUT",
        "2.0"
    ))

    # Circuit breaker
    call_timeout: float = field(default_factory=lambda: _env_float("CACHE_CALL_TIMEOUT", "3.0"))
    error_threshold: float = field(default_factory=lambda: _env_float(
        "CACHE_ERROR_THRESHOLD",
        "0.5"
    ))
    rolling_window: float = field(default_factory=lambda: _env_float(
        "CACHE_ROLLING_WINDOW",
        "10.0"
    ))
    minimum_calls: int = field(default_factory=lambda: _env_int("CACHE_MINIMUM_CALLS", "5"))
    cooldown: float = field(default_factory=lambda: _env_float("CACHE_COOLDOWN", "30.0"))

    # Background liveness probe
    health_check_interval: float = field(default_factory=lambda: _env_float(
        "CACHE_HEALTH_CHECK_INTERVAL",
        "15.0"
    ))

    # Negative caching for single-entity lookups
    negative_ttl: float = field(default_factory=lambda: _env_float("CACHE_NEGATIVE_TTL", "30"))

    # Invalidation retries after a failed delete
    retry_attempts: int = field(default_factory=lambda: _env_int(
        "CACHE_INVALIDATION_RETRIES",
        "5"
    ))
    retry_backoff: float = field(default_factory=lambda: _env_float(
        "CACHE_INVALIDATION_BACKOFF",
        "0.5"
    ))

    @property
    def negative_ttl_delta(self) -> Optional[timedelta]:
        if self.negative_ttl <= 0:
            return None
        return timedelta(seconds=self.negative_ttl)


@lru_cache(maxsize=1)
def get_cache_config() -> CacheConfig:
    """Get singleton cache configuration."""
    return CacheConfig()
