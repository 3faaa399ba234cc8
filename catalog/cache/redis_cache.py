"""
Redis Cache Implementation

Cache client over Redis with:
- JSON serialization
- Circuit breaker with call timeout for resilience
- Connection health tracking with a background liveness probe
- Invalidation groups (Redis sets listing the keys of a templated query)
- Statistics tracking
"""

import asyncio
import contextlib
import logging
import time
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set
from dataclasses import dataclass, field

from redis.asyncio import Redis, ConnectionPool
from redis.exceptions import RedisError, ConnectionError as RedisConnectionError

from catalog.cache.breaker import CircuitBreaker
from catalog.cache.config import CacheConfig, get_cache_config
from catalog.cache.errors import BackendUnavailable
from catalog.cache.serialization import serialize_value, deserialize_value


logger = logging.getLogger(__name__)


@dataclass
class CacheStats:
    """Cache operation statistics."""
    hits: int = 0
    misses: int = 0
    errors: int = 0
    bytes_written: int = 0
    bytes_read: int = 0
    latency_samples: List[float] = field(default_factory=list)

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    @property
    def avg_latency_ms(self) -> float:
        if not self.latency_samples:
            return 0.0
        return sum(self.latency_samples[-100:]) / len(self.latency_samples[-100:]) * 1000

    def record_latency(self, seconds: float):
        """Record a latency sample."""
        self.latency_samples.append(seconds)
        # Keep only last 1000 samples
        if len(self.latency_samples) > 1000:
            self.latency_samples = self.latency_samples[-1000:]


class RedisCache:
    """
    Redis cache client with get/set/delete primitives.

    Every Redis command runs through the circuit breaker. Failures surface
    as BackendUnavailable; a missing key is not an error and returns None.

    Create one instance at startup, call ``initialize()``, share it with
    every accessor and call ``close()`` on shutdown.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        redis: Optional[Redis] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.config = config or get_cache_config()
        self._redis = redis
        self._owns_client = redis is None
        self._pool: Optional[ConnectionPool] = None
        self._breaker = breaker or CircuitBreaker(
            name="redis",
            call_timeout=self.config.call_timeout,
            error_threshold=self.config.error_threshold,
            rolling_window=self.config.rolling_window,
            minimum_calls=self.config.minimum_calls,
            cooldown=self.config.cooldown,
            failure_exceptions=(RedisError, OSError),
        )
        self._stats = CacheStats()
        self._connected = False
        self._initialized = False
        self._health_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def _create_client(self) -> Redis:
        pool_kwargs = dict(
            max_connections=self.config.redis_max_connections,
            socket_timeout=self.config.call_timeout,
            socket_connect_timeout=self.config.redis_connect_timeout,
            decode_responses=False,  # We handle bytes directly
        )
        if self.config.redis_url:
            self._pool = ConnectionPool.from_url(self.config.redis_url, **pool_kwargs)
        else:
            self._pool = ConnectionPool(
                host=self.config.redis_host,
                port=self.config.redis_port,
                password=self.config.redis_password,
                db=self.config.redis_db,
                **pool_kwargs,
            )
        return Redis(connection_pool=self._pool)

    async def initialize(self):
        """
        Create the connection pool and start the liveness probe.

        An unreachable Redis does not fail startup: the cache reports
        itself disconnected and every operation retries the connection.
        """
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            if self._redis is None:
                self._redis = self._create_client()
            self._initialized = True

            if not self.config.enabled:
                logger.info("Cache disabled by configuration")
                return

            if await self.ping():
                logger.info(
                    f"Redis cache initialized: {self.config.redis_url or self.config.redis_host}"
                )
            else:
                logger.warning("Redis unreachable at startup, serving from the store until it recovers")

            if self.config.health_check_interval > 0:
                self._health_task = asyncio.create_task(self._health_loop())

    async def close(self):
        """Stop the liveness probe and close the connection pool."""
        if self._health_task is not None:
            self._health_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._health_task
            self._health_task = None
        if self._redis is not None and self._owns_client:
            await self._redis.aclose()
            self._redis = None
        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None
        self._initialized = False
        self._connected = False
        logger.info("Redis cache closed")

    # =========================================================================
    # Connection Health
    # =========================================================================

    async def ping(self) -> bool:
        """Liveness probe. Updates and returns the connected flag."""
        try:
            await self._breaker.call(self._redis.ping)
        except BackendUnavailable as e:
            if self._connected:
                logger.warning(f"Redis liveness probe failed: {e}")
            self._connected = False
            return False

        if not self._connected:
            logger.info("Redis connection established")
        self._connected = True
        return True

    async def _health_loop(self):
        interval = self.config.health_check_interval
        while True:
            await asyncio.sleep(interval)
            try:
                await self.ping()
            except Exception:
                logger.exception("Unexpected error in Redis health probe")

    async def _ensure_connected(self):
        if not self._initialized:
            await self.initialize()
        if not self._connected and not await self.ping():
            raise BackendUnavailable("Redis is disconnected")

    async def _execute(
        self,
        operation: str,
        key: str,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Run one Redis command with health check, breaker, stats and logging."""
        await self._ensure_connected()

        start_time = time.perf_counter()
        try:
            result = await self._breaker.call(func, *args, **kwargs)
        except BackendUnavailable as e:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            self._stats.errors += 1
            if isinstance(e.__cause__, (RedisConnectionError, OSError, asyncio.TimeoutError)):
                self._connected = False
            logger.warning(f"Cache {operation} failed for {key} after {elapsed_ms:.1f}ms: {e}")
            raise

        elapsed = time.perf_counter() - start_time
        self._stats.record_latency(elapsed)
        logger.debug(f"Cache {operation} {key} ok in {elapsed * 1000:.1f}ms")
        return result

    # =========================================================================
    # Core Operations
    # =========================================================================

    async def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Returns None if the key doesn't exist, the cache is disabled or the
        stored payload can't be decoded.

        Raises:
            BackendUnavailable: Redis unreachable, timed out or circuit open
        """
        if not self.config.enabled:
            return None

        data = await self._execute("get", key, self._redis.get, key)

        if data is None:
            self._stats.misses += 1
            return None

        self._stats.bytes_read += len(data)
        try:
            value = deserialize_value(data)
        except ValueError as e:
            self._stats.errors += 1
            logger.error(f"Discarding undecodable cache entry {key}: {e}")
            return None

        self._stats.hits += 1
        return value

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[timedelta] = None,
        group: Optional[str] = None,
    ):
        """
        Set value in cache with optional TTL.

        When ``group`` is given the key is also recorded in that
        invalidation group so ``invalidate_group`` can find it later. The
        value and its group membership are written in one MULTI/EXEC, so a
        key is never cached without being tracked.

        Raises:
            BackendUnavailable: Redis unreachable, timed out or circuit open
        """
        if not self.config.enabled:
            return

        serialized = serialize_value(value)
        if group:
            await self._execute("set", key, self._set_in_group, key, serialized, ttl, group)
        else:
            await self._execute("set", key, self._redis.set, key, serialized, ex=ttl)
        self._stats.bytes_written += len(serialized)

    async def _set_in_group(
        self,
        key: str,
        serialized: bytes,
        ttl: Optional[timedelta],
        group: str,
    ):
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.sadd(group, key)
            pipe.set(key, serialized, ex=ttl)
            if ttl:
                # Members expire with the same TTL, so the index outlives them
                pipe.expire(group, ttl)
            return await pipe.execute()

    async def delete(self, *keys: str) -> int:
        """
        Delete one or more keys. Missing keys are ignored.

        Returns the number of keys Redis actually removed.
        """
        keys = tuple(k for k in keys if k)
        if not self.config.enabled or not keys:
            return 0

        deleted = await self._execute("delete", ", ".join(keys), self._redis.delete, *keys)
        logger.debug(f"Deleted {deleted} of {len(keys)} cache keys")
        return int(deleted or 0)

    async def group_members(self, group: str) -> Set[str]:
        """Keys currently recorded in an invalidation group."""
        if not self.config.enabled:
            return set()

        members = await self._execute("smembers", group, self._redis.smembers, group)
        return {
            m.decode("utf-8") if isinstance(m, bytes) else m
            for m in (members or ())
        }

    async def invalidate_group(self, group: str) -> int:
        """Delete every key recorded in a group, then the group itself."""
        members = await self.group_members(group)
        count = await self.delete(*sorted(members), group)
        logger.info(f"Invalidated group {group}: {len(members)} tracked keys")
        return count

    # =========================================================================
    # Statistics and Health
    # =========================================================================

    def get_stats(self) -> Dict:
        """Get cache statistics."""
        return {
            "enabled": self.config.enabled,
            "initialized": self._initialized,
            "connected": self._connected,
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "errors": self._stats.errors,
            "hit_rate_percent": round(self._stats.hit_rate * 100, 2),
            "avg_latency_ms": round(self._stats.avg_latency_ms, 2),
            "bytes_written": self._stats.bytes_written,
            "bytes_read": self._stats.bytes_read,
            "circuit_breaker": self._breaker.get_stats(),
        }

    async def health_check(self) -> Dict:
        """Perform health check."""
        if not self.config.enabled:
            return {"healthy": True, "status": "disabled"}

        if not self._initialized:
            await self.initialize()

        start = time.perf_counter()
        healthy = await self.ping()
        latency_ms = (time.perf_counter() - start) * 1000

        return {
            "healthy": healthy,
            "status": "connected" if healthy else "disconnected",
            "latency_ms": round(latency_ms, 2),
            "stats": self.get_stats(),
        }
