"""
Catalog Service

Read-through / write-invalidate access to the product catalog.

Reads:
1. Compute the cache key for the requested shape
2. Return the cached value on a hit, without touching the store
3. On a miss, query the store, cache the result with the entity's TTL
   and return it

Writes:
1. Run the store mutation in a transaction
2. After the commit, invalidate every cached key the write can affect

The store is the source of truth. Cache failures degrade to store-only
reads and never change the outcome a caller sees; store failures are
always surfaced.
"""

import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, List, Optional

from catalog.cache import keys
from catalog.cache.config import CacheConfig, CacheTTL, get_cache_config
from catalog.cache.errors import BackendUnavailable
from catalog.cache.invalidation import CacheEvent, CacheInvalidator
from catalog.cache.redis_cache import RedisCache
from catalog.database.repository import ProductRepository
from catalog.models import (
    Category,
    CreateProductInput,
    CreateReviewInput,
    Product,
    ProductVariant,
    Review,
)


logger = logging.getLogger(__name__)


class CatalogService:
    """
    Cached catalog operations.

    Args:
        repository: Store access
        cache: Shared cache client
        invalidator: Post-commit invalidation; built from ``cache`` if omitted
        ttl: Per-entity expiry policy
        config: Cache configuration (negative lookup TTL)
    """

    def __init__(
        self,
        repository: ProductRepository,
        cache: RedisCache,
        invalidator: Optional[CacheInvalidator] = None,
        ttl: Optional[CacheTTL] = None,
        config: Optional[CacheConfig] = None,
    ):
        self._repository = repository
        self._cache = cache
        self._config = config or get_cache_config()
        self._invalidator = invalidator or CacheInvalidator(cache, self._config)
        self._ttl = ttl or CacheTTL()

    # =========================================================================
    # Cache helpers
    # =========================================================================

    async def _cache_get(self, key: str) -> Optional[Any]:
        """Cache lookup; an unavailable cache is a miss."""
        try:
            return await self._cache.get(key)
        except BackendUnavailable as e:
            logger.warning(f"Cache unavailable for {key}, reading from store: {e}")
            return None

    async def _cache_set(
        self,
        key: str,
        value: Any,
        ttl: Optional[timedelta],
        group: Optional[str] = None,
    ):
        try:
            await self._cache.set(key, value, ttl, group=group)
        except BackendUnavailable as e:
            logger.warning(f"Cache unavailable, not caching {key}: {e}")

    async def _read_through(
        self,
        key: str,
        load: Callable[[], Awaitable[Any]],
        ttl: timedelta,
        group: Optional[str] = None,
        fresh: bool = False,
    ) -> Optional[Any]:
        """
        Cached value for ``key``, loading and caching it on a miss.

        ``load`` returns a JSON-compatible value, or None for "not found"
        (which is not cached here). ``fresh`` skips the lookup but still
        repopulates the cache.
        """
        if not fresh:
            cached = await self._cache_get(key)
            if cached is not None:
                logger.debug(f"Cache hit: {key}")
                return cached

        value = await load()
        if value is None:
            return None

        await self._cache_set(key, value, ttl, group=group)
        return value

    # =========================================================================
    # Products
    # =========================================================================

    async def list_products(
        self,
        limit: int = 10,
        offset: int = 0,
        fresh: bool = False,
    ) -> List[Product]:
        """Page of active products, newest first."""
        async def load():
            products = await self._repository.list_products(limit=limit, offset=offset)
            return [p.model_dump(mode="json") for p in products]

        payload = await self._read_through(
            keys.products_list_key(limit, offset),
            load,
            ttl=self._ttl.PRODUCT_LIST,
            group=keys.PRODUCT_LISTS_GROUP,
            fresh=fresh,
        )
        return [Product.model_validate(item) for item in payload]

    async def get_product(self, product_id: str, fresh: bool = False) -> Optional[Product]:
        """
        Single product by id, or None.

        "Not found" is remembered for ``negative_ttl`` so repeated lookups
        of a missing id don't all reach the store.
        """
        absent_key = keys.product_absent_key(product_id)
        negative_ttl = self._config.negative_ttl_delta

        if not fresh and negative_ttl and await self._cache_get(absent_key):
            logger.debug(f"Negative cache hit: {absent_key}")
            return None

        async def load():
            product = await self._repository.get_product(product_id)
            return product.model_dump(mode="json") if product else None

        payload = await self._read_through(
            keys.product_key(product_id),
            load,
            ttl=self._ttl.PRODUCT,
            fresh=fresh,
        )
        if payload is None:
            if negative_ttl:
                await self._cache_set(absent_key, True, negative_ttl)
            return None
        return Product.model_validate(payload)

    async def create_product(self, data: CreateProductInput) -> Product:
        """
        Create a product with its variants.

        Raises:
            StoreQueryFailed: the transaction was rolled back; nothing was
                invalidated
        """
        product = await self._repository.create_product(data)
        await self._invalidator.handle_event(CacheEvent.PRODUCT_CREATED, product_id=product.id)
        return product

    # =========================================================================
    # Child collections (the parent record is passed in, so it exists)
    # =========================================================================

    async def category_for(self, product: Product) -> Optional[Category]:
        async def load():
            category = await self._repository.get_category(product.category_id)
            return category.model_dump(mode="json") if category else None

        payload = await self._read_through(
            keys.category_key(product.category_id),
            load,
            ttl=self._ttl.CATEGORY,
        )
        return Category.model_validate(payload) if payload is not None else None

    async def reviews_for(self, product: Product) -> List[Review]:
        async def load():
            reviews = await self._repository.get_reviews(product.id)
            return [r.model_dump(mode="json") for r in reviews]

        payload = await self._read_through(
            keys.reviews_key(product.id),
            load,
            ttl=self._ttl.REVIEWS,
        )
        return [Review.model_validate(item) for item in payload]

    async def variants_for(self, product: Product) -> List[ProductVariant]:
        async def load():
            variants = await self._repository.get_variants(product.id)
            return [v.model_dump(mode="json") for v in variants]

        payload = await self._read_through(
            keys.variants_key(product.id),
            load,
            ttl=self._ttl.VARIANTS,
        )
        return [ProductVariant.model_validate(item) for item in payload]

    async def create_review(
        self,
        product_id: str,
        data: CreateReviewInput,
    ) -> Optional[Review]:
        """
        Review an existing product. Returns None if the product doesn't exist.

        Raises:
            StoreQueryFailed: the transaction was rolled back
        """
        product = await self._repository.get_product(product_id)
        if product is None:
            return None

        review = await self._repository.create_review(product_id, data)
        await self._invalidator.handle_event(CacheEvent.REVIEW_CREATED, product_id=product_id)
        return review

    async def invalidate_product(self, product_id: str):
        """Drop everything cached for a product and all product lists."""
        return await self._invalidator.handle_event(
            CacheEvent.MANUAL_INVALIDATE_PRODUCT,
            product_id=product_id,
        )

    async def close(self):
        await self._invalidator.close()
