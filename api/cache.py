"""
Cache Management API

Provides endpoints for cache monitoring and manual operations.

Endpoints:
- Health check for monitoring/alerting
- Statistics for dashboard insights
- Manual invalidation for debugging
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from catalog.cache.redis_cache import RedisCache
from catalog.services.catalog import CatalogService
from api.dependencies import get_cache, get_catalog


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/cache", tags=["Cache Management"])


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class CacheHealthResponse(BaseModel):
    """Cache health check response."""
    status: str = Field(..., description="healthy, unhealthy or disabled")
    backend: str = Field(default="redis", description="Cache backend type")
    latency_ms: float = 0.0
    circuit_state: str = Field(..., description="closed, open or half_open")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class InvalidationResponse(BaseModel):
    """Cache invalidation response."""
    success: bool
    keys_invalidated: int
    duration_ms: float
    deferred: bool = False
    errors: List[str] = []


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/health", response_model=CacheHealthResponse)
async def cache_health_check(cache: RedisCache = Depends(get_cache)):
    """
    Check cache infrastructure health.

    Use this endpoint for monitoring and alerting systems. An unhealthy
    cache does not make the catalog unavailable; reads fall back to the
    store.
    """
    health = await cache.health_check()

    if health["status"] == "disabled":
        status = "disabled"
    else:
        status = "healthy" if health["healthy"] else "unhealthy"

    return CacheHealthResponse(
        status=status,
        latency_ms=health.get("latency_ms", 0.0),
        circuit_state=cache.breaker.state.value,
    )


@router.get("/stats")
async def get_cache_stats(cache: RedisCache = Depends(get_cache)) -> Dict[str, Any]:
    """
    Get current cache statistics.

    Note: Stats are reset on application restart.
    """
    return cache.get_stats()


@router.post("/invalidate/product/{product_id}", response_model=InvalidationResponse)
async def invalidate_product_cache(
    product_id: str,
    catalog: CatalogService = Depends(get_catalog),
):
    """
    Invalidate everything cached for a product, plus all product lists.

    Use this after manual data corrections in the store.
    """
    result = await catalog.invalidate_product(product_id)

    return InvalidationResponse(
        success=result.success,
        keys_invalidated=result.keys_invalidated,
        duration_ms=result.duration_ms,
        deferred=result.deferred,
        errors=result.errors,
    )
