"""
Product Catalog API Application

FastAPI app that wires the catalog together:
1. Database (SQLAlchemy async engine + connection pool)
2. RedisCache (shared cache client with circuit breaker)
3. CatalogService (read-through cache, write-invalidate)

Components are created once per process, shared by every request and
closed explicitly on shutdown.
"""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from catalog import __version__
from catalog.cache.config import CacheConfig
from catalog.cache.redis_cache import RedisCache
from catalog.database import Database, ProductRepository, StoreQueryFailed
from catalog.services.catalog import CatalogService
from catalog.utils.config import Settings, get_settings
from api import cache as cache_routes
from api import products as product_routes


logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO"):
    """Log to stdout with timestamps; quiet down chatty loggers."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
        force=True,  # Override any existing config
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def cache_config_from_settings(settings: Settings) -> CacheConfig:
    """
    Cache configuration with the connection taken from the app settings.

    The connection always comes from ``settings``: REDIS_URL when set,
    otherwise REDIS_HOST and REDIS_PORT.
    """
    return CacheConfig(
        redis_url=settings.REDIS_URL,
        redis_host=settings.REDIS_HOST,
        redis_port=settings.REDIS_PORT,
        redis_password=settings.REDIS_PASSWORD,
        redis_db=settings.REDIS_DB,
    )


def create_app(
    database: Optional[Database] = None,
    cache: Optional[RedisCache] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the application.

    ``database`` and ``cache`` default to instances configured from the
    environment; tests pass their own.
    """
    settings = settings or get_settings()
    database = database or Database.from_settings(settings)
    cache_config = cache.config if cache else cache_config_from_settings(settings)
    cache = cache or RedisCache(cache_config)
    catalog = CatalogService(ProductRepository(database), cache, config=cache_config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Initializing database...")
        await database.init_db()
        if not await database.check_connection():
            logger.warning("Database connection check failed - continuing anyway")
        await cache.initialize()
        try:
            yield
        finally:
            logger.info("Shutting down...")
            await catalog.close()
            await cache.close()
            await database.close()

    app = FastAPI(
        title="Product Catalog API",
        description="Product catalog with a Redis read-through cache",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.database = database
    app.state.cache = cache
    app.state.catalog = catalog

    @app.exception_handler(StoreQueryFailed)
    async def store_query_failed_handler(request: Request, exc: StoreQueryFailed):
        if exc.is_integrity_error:
            return JSONResponse(status_code=409, content={"detail": str(exc)})
        return JSONResponse(status_code=503, content={"detail": "Store unavailable"})

    @app.get("/api/health")
    async def health():
        """Health check including database and cache status."""
        db_connected = await database.check_connection()
        return {
            "status": "healthy" if db_connected else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
            "database": "connected" if db_connected else "disconnected",
            "database_pool": database.get_pool_stats(),
            "cache": "connected" if cache.connected else "disconnected",
        }

    app.include_router(product_routes.router)
    app.include_router(cache_routes.router)

    return app


configure_logging(get_settings().LOG_LEVEL)
app = create_app()


# ============================================================================
# RUN SERVER
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
