"""
Cache Invalidation Service

Event-driven cache invalidation with minimal scope.
Principle: Invalidate every key whose result a committed write can change,
and nothing else.

Events trigger targeted cache invalidation:
- PRODUCT_CREATED: product entity (and its "not found" marker) + all product lists
- REVIEW_CREATED: review collection + product entity (average rating) + all product lists
- MANUAL_INVALIDATE_PRODUCT: everything cached for one product + all product lists

Callers fire events only after the store transaction has committed.
A failed delete never fails the write: the keys are kept as pending and
retried in the background with exponential backoff.
"""

import asyncio
import contextlib
import logging
import time
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional, Set, Tuple
from dataclasses import dataclass, field

from catalog.cache import keys
from catalog.cache.config import CacheConfig, get_cache_config
from catalog.cache.errors import BackendUnavailable
from catalog.cache.redis_cache import RedisCache


logger = logging.getLogger(__name__)


class CacheEvent(Enum):
    """Events that trigger cache invalidation."""

    PRODUCT_CREATED = "product_created"
    REVIEW_CREATED = "review_created"

    # Manual invalidation
    MANUAL_INVALIDATE_PRODUCT = "manual_invalidate_product"


@dataclass
class InvalidationResult:
    """Result of a cache invalidation operation."""
    event: CacheEvent
    success: bool
    keys_invalidated: int
    duration_ms: float
    errors: List[str] = field(default_factory=list)
    deferred: bool = False


class CacheInvalidator:
    """
    Handles cache invalidation based on events.

    Each event type has a specific invalidation scope: literal keys that
    can be derived from the event, and invalidation groups for templated
    queries (paginated lists) whose instances are only known to Redis.
    """

    def __init__(
        self,
        cache: RedisCache,
        config: Optional[CacheConfig] = None,
    ):
        self._cache = cache
        config = config or get_cache_config()
        self._retry_attempts = config.retry_attempts
        self._retry_backoff = config.retry_backoff
        self._pending_keys: Set[str] = set()
        self._pending_groups: Set[str] = set()
        self._new_deferrals = False
        self._retry_task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> FrozenSet[str]:
        """Keys and groups whose invalidation has not been confirmed yet."""
        return frozenset(self._pending_keys | self._pending_groups)

    def scope_for(
        self,
        event: CacheEvent,
        product_id: Optional[str] = None,
    ) -> Tuple[List[str], List[str]]:
        """Keys and groups affected by an event."""
        if event == CacheEvent.PRODUCT_CREATED:
            # A new product can appear on any page of any list
            return (
                [keys.product_key(product_id), keys.product_absent_key(product_id)],
                [keys.PRODUCT_LISTS_GROUP],
            )

        if event == CacheEvent.REVIEW_CREATED:
            # The average rating is embedded in the product and in every list row
            return (
                [keys.reviews_key(product_id), keys.product_key(product_id)],
                [keys.PRODUCT_LISTS_GROUP],
            )

        if event == CacheEvent.MANUAL_INVALIDATE_PRODUCT:
            return (
                [
                    keys.product_key(product_id),
                    keys.product_absent_key(product_id),
                    keys.reviews_key(product_id),
                    keys.variants_key(product_id),
                ],
                [keys.PRODUCT_LISTS_GROUP],
            )

        return [], []

    async def handle_event(
        self,
        event: CacheEvent,
        product_id: Optional[str] = None,
    ) -> InvalidationResult:
        """
        Handle cache invalidation for an event.

        Never raises for cache failures; they are reported in the result
        and retried in the background.
        """
        start_time = time.perf_counter()
        errors = []
        keys_invalidated = 0

        literal_keys, groups = self.scope_for(event, product_id=product_id)

        logger.info(
            f"Cache invalidation event: {event.value}, product={product_id}, "
            f"keys={literal_keys}, groups={groups}"
        )

        if literal_keys:
            try:
                keys_invalidated += await self._cache.delete(*literal_keys)
            except BackendUnavailable as e:
                errors.append(str(e))
                self._defer(keys=literal_keys)

        for group in groups:
            try:
                keys_invalidated += await self._cache.invalidate_group(group)
            except BackendUnavailable as e:
                errors.append(str(e))
                self._defer(groups=[group])

        duration = (time.perf_counter() - start_time) * 1000

        if errors:
            logger.error(
                f"Cache invalidation for {event.value} incomplete, retrying in background: "
                f"{'; '.join(errors)}"
            )

        result = InvalidationResult(
            event=event,
            success=not errors,
            keys_invalidated=keys_invalidated,
            duration_ms=duration,
            errors=errors,
            deferred=bool(errors),
        )

        logger.info(
            f"Invalidation complete: {keys_invalidated} keys, duration: {duration:.2f}ms"
        )

        return result

    # =========================================================================
    # Background retry
    # =========================================================================

    def _defer(self, keys: Iterable[str] = (), groups: Iterable[str] = ()):
        self._pending_keys.update(keys)
        self._pending_groups.update(groups)
        self._new_deferrals = True
        if self._retry_task is None or self._retry_task.done():
            self._retry_task = asyncio.create_task(self._retry_pending())

    async def _retry_pending(self):
        """
        Retry pending deletes with exponential backoff.

        While the circuit is open the retry waits out the cooldown without
        spending an attempt, so every attempt reaches Redis. New deferrals
        restart the attempt budget.
        """
        breaker = self._cache.breaker
        attempt = 0
        delay = self._retry_backoff
        while True:
            if self._new_deferrals:
                self._new_deferrals = False
                attempt = 0
                delay = self._retry_backoff
            if attempt >= self._retry_attempts:
                break

            await asyncio.sleep(max(delay, breaker.remaining_cooldown()))
            if breaker.is_open:
                continue

            attempt += 1
            if await self._flush_pending() and not self.pending:
                logger.info(f"Deferred cache invalidation succeeded on attempt {attempt}")
                return
            delay *= 2

        logger.error(
            f"Giving up on invalidating {sorted(self.pending)} after "
            f"{self._retry_attempts} attempts; entries will expire by TTL"
        )
        self._pending_keys.clear()
        self._pending_groups.clear()

    async def _flush_pending(self) -> bool:
        pending_keys = set(self._pending_keys)
        try:
            if pending_keys:
                await self._cache.delete(*sorted(pending_keys))
                self._pending_keys -= pending_keys
            for group in sorted(self._pending_groups):
                await self._cache.invalidate_group(group)
                self._pending_groups.discard(group)
        except BackendUnavailable as e:
            logger.warning(f"Deferred cache invalidation failed: {e}")
            return False
        return True

    async def close(self):
        """Cancel the background retry task."""
        if self._retry_task is not None and not self._retry_task.done():
            self._retry_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._retry_task
        self._retry_task = None
