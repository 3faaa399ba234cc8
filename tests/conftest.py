"""
Pytest Configuration and Shared Fixtures

Provides common fixtures for all test modules:
- FakeClock / FakeRedis: in-memory Redis double with controllable expiry
- database: in-memory SQLite (aiosqlite) with the catalog schema
- cache / catalog: the cache client and catalog service wired to both
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest
from sqlalchemy import event

from catalog.cache.config import CacheConfig
from catalog.cache.redis_cache import RedisCache
from catalog.database.models import Category, Product, Review
from catalog.database.repository import ProductRepository
from catalog.database.session import Database, create_db_engine
from catalog.services.catalog import CatalogService
from catalog.utils.config import Settings


CATEGORY_ID = "fd5f0dfe-a9ed-4234-b0a0-afc3c187c10b"


# ============================================================================
# Redis Double
# ============================================================================

class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeRedis:
    """
    In-memory stand-in for ``redis.asyncio.Redis``.

    Supports the commands the cache client uses, plus MULTI/EXEC
    pipelines. Expiry follows the injected clock. Set ``error`` to make
    every command raise it, ``delay`` to make every command slow, or call
    ``fail_next`` to make one named command fail once.
    """

    def __init__(self, clock: FakeClock):
        self._clock = clock
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._failures: Dict[str, Exception] = {}
        self.calls: List[Tuple[str, tuple]] = []
        self.error: Optional[Exception] = None
        self.delay = 0.0

    def fail_next(self, name: str, error: Exception):
        """Make the next ``name`` command raise ``error``."""
        self._failures[name] = error

    def _raise_injected(self, name: str):
        error = self._failures.pop(name, None)
        if error is not None:
            raise error

    async def _command(self, name: str, *args):
        self.calls.append((name, args))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self._raise_injected(name)

    def _live(self, key: str):
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def _expiry(self, ttl) -> Optional[float]:
        if not ttl:
            return None
        seconds = ttl.total_seconds() if isinstance(ttl, timedelta) else float(ttl)
        return self._clock() + seconds

    def command_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def load(self, key: str) -> Any:
        """Decoded JSON value stored under key, or None."""
        value = self._live(key)
        if value is None:
            return None
        return json.loads(value)

    def store(self, key: str, value: Any, ttl: Optional[float] = None):
        """Seed a JSON value without going through the client."""
        self._data[key] = (json.dumps(value).encode("utf-8"), self._expiry(ttl))

    def contains(self, key: str) -> bool:
        return self._live(key) is not None

    async def ping(self):
        await self._command("ping")
        return True

    async def get(self, key):
        await self._command("get", key)
        return self._live(key)

    def _set(self, key, value, ex=None):
        self._data[key] = (value, self._expiry(ex))
        return True

    def _sadd(self, key, *members):
        current = self._live(key)
        expires_at = self._data[key][1] if current is not None else None
        members_set = set(current) if current is not None else set()
        encoded = {m.encode("utf-8") if isinstance(m, str) else m for m in members}
        added = len(encoded - members_set)
        self._data[key] = (members_set | encoded, expires_at)
        return added

    def _expire(self, key, ttl):
        value = self._live(key)
        if value is None:
            return False
        self._data[key] = (value, self._expiry(ttl))
        return True

    async def set(self, key, value, ex=None):
        await self._command("set", key, value, ex)
        return self._set(key, value, ex)

    async def delete(self, *keys):
        await self._command("delete", *keys)
        deleted = 0
        for key in keys:
            if self._live(key) is not None:
                del self._data[key]
                deleted += 1
        return deleted

    async def sadd(self, key, *members):
        await self._command("sadd", key, *members)
        return self._sadd(key, *members)

    async def smembers(self, key):
        await self._command("smembers", key)
        return set(self._live(key) or set())

    async def expire(self, key, ttl):
        await self._command("expire", key, ttl)
        return self._expire(key, ttl)

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        return FakePipeline(self)

    async def aclose(self):
        pass


class FakePipeline:
    """
    MULTI/EXEC against FakeRedis: queued commands are applied together,
    or not at all when any of them fails.
    """

    def __init__(self, redis: FakeRedis):
        self._redis = redis
        self._queue: List[Tuple[str, tuple]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self._queue.clear()

    def set(self, key, value, ex=None):
        self._queue.append(("set", (key, value, ex)))
        return self

    def sadd(self, key, *members):
        self._queue.append(("sadd", (key, *members)))
        return self

    def expire(self, key, ttl):
        self._queue.append(("expire", (key, ttl)))
        return self

    async def execute(self):
        await self._redis._command("multi")
        for name, args in self._queue:
            self._redis.calls.append((name, args))
        for name, _ in self._queue:
            self._redis._raise_injected(name)
        apply = {
            "set": self._redis._set,
            "sadd": self._redis._sadd,
            "expire": self._redis._expire,
        }
        results = [apply[name](*args) for name, args in self._queue]
        self._queue.clear()
        return results


# ============================================================================
# Cache Fixtures
# ============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis(clock) -> FakeRedis:
    return FakeRedis(clock)


@pytest.fixture
def cache_config() -> CacheConfig:
    """Test cache config: no background probe, fast retries."""
    return CacheConfig(
        enabled=True,
        call_timeout=0.5,
        error_threshold=0.5,
        rolling_window=10.0,
        minimum_calls=5,
        cooldown=30.0,
        health_check_interval=0,
        negative_ttl=30,
        retry_attempts=3,
        retry_backoff=0.01,
    )


@pytest.fixture
async def cache(cache_config, fake_redis):
    cache = RedisCache(cache_config, redis=fake_redis)
    await cache.initialize()
    yield cache
    await cache.close()


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
async def database():
    """Fresh in-memory database per test."""
    db = Database(create_db_engine("sqlite+aiosqlite://", settings=Settings()))
    await db.init_db()
    yield db
    await db.close()


@pytest.fixture
async def category(database) -> str:
    """Seed one category and return its id."""
    async with database.transaction() as session:
        session.add(Category(id=CATEGORY_ID, name="Elektronik", description="Geräte"))
    return CATEGORY_ID


@pytest.fixture
def seed_product(database, category):
    """Factory inserting an active product (optionally with ratings)."""
    async def _seed(
        name: str,
        price: float = 100.0,
        stock: int = 10,
        is_active: bool = True,
        ratings: Tuple[float, ...] = (),
        created_at: Optional[datetime] = None,
    ) -> str:
        async with database.transaction() as session:
            product = Product(
                name=name,
                description=f"Beschreibung für {name}",
                price=price,
                stock=stock,
                category_id=category,
                is_active=is_active,
                created_at=created_at or datetime.now(timezone.utc),
            )
            session.add(product)
            await session.flush()
            for rating in ratings:
                session.add(Review(product_id=product.id, user_id="user-1", rating=rating))
            return product.id
    return _seed


@pytest.fixture
def transaction_log(database):
    """Records BEGIN/COMMIT/ROLLBACK on the engine from the moment it's requested."""
    log: List[str] = []
    engine = database.engine.sync_engine

    def on_begin(conn):
        log.append("BEGIN")

    def on_commit(conn):
        log.append("COMMIT")

    def on_rollback(conn):
        log.append("ROLLBACK")

    def start():
        event.listen(engine, "begin", on_begin)
        event.listen(engine, "commit", on_commit)
        event.listen(engine, "rollback", on_rollback)
        return log

    yield start

    for name, fn in (("begin", on_begin), ("commit", on_commit), ("rollback", on_rollback)):
        if event.contains(engine, name, fn):
            event.remove(engine, name, fn)


# ============================================================================
# Service Fixtures
# ============================================================================

@pytest.fixture
def repository(database) -> ProductRepository:
    return ProductRepository(database)


@pytest.fixture
async def catalog(repository, cache, cache_config):
    service = CatalogService(repository, cache, config=cache_config)
    yield service
    await service.close()


# ============================================================================
# Test Markers
# ============================================================================

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
