"""Request dependencies shared by the routers."""

from fastapi import Request

from catalog.cache.redis_cache import RedisCache
from catalog.services.catalog import CatalogService


def get_catalog(request: Request) -> CatalogService:
    return request.app.state.catalog


def get_cache(request: Request) -> RedisCache:
    return request.app.state.cache
