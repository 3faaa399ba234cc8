"""
Database Session Management

Handles connection pooling, session lifecycle, and database initialization.
Designed for both PostgreSQL (asyncpg) and local development/tests
(SQLite via aiosqlite).
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from catalog.utils.config import Settings, get_settings
from .models import Base

logger = logging.getLogger(__name__)

# =============================================================================
# DATABASE URL CONFIGURATION
# =============================================================================

def get_database_url(url: Optional[str] = None) -> str:
    """
    Normalize the database URL to an async driver.

    postgres:// and postgresql:// become postgresql+asyncpg://,
    sqlite:// becomes sqlite+aiosqlite://.
    """
    url = url or get_settings().DATABASE_URL

    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif url.startswith("sqlite://"):
        url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    return url


# =============================================================================
# ENGINE CONFIGURATION
# =============================================================================

def create_db_engine(
    url: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> AsyncEngine:
    """
    Create database engine with appropriate settings.

    PostgreSQL: bounded connection pool, acquire/connect timeout, idle recycle
    SQLite: simpler settings, foreign key support
    """
    settings = settings or get_settings()
    url = get_database_url(url or settings.DATABASE_URL)

    if url.startswith("postgresql"):
        engine = create_async_engine(
            url,
            pool_size=settings.DB_POOL_SIZE,        # Max live connections
            max_overflow=settings.DB_MAX_OVERFLOW,  # Extra connections under load
            pool_timeout=settings.DB_POOL_TIMEOUT,  # Wait for a free connection
            pool_recycle=settings.DB_IDLE_TIMEOUT,  # Recycle idle connections
            pool_pre_ping=True,                     # Verify connections before use
            connect_args={"timeout": settings.DB_POOL_TIMEOUT},
            echo=settings.SQL_DEBUG,
        )
        logger.info("Created PostgreSQL engine with connection pooling")
    else:
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.rstrip("/").endswith("aiosqlite:"):
            # In-memory databases live and die with their single connection
            kwargs["poolclass"] = StaticPool
        engine = create_async_engine(url, echo=settings.SQL_DEBUG, **kwargs)

        # Enable foreign keys for SQLite
        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        logger.info("Created SQLite engine")

    return engine


# =============================================================================
# SESSION MANAGEMENT
# =============================================================================

class Database:
    """
    Owns the engine, its connection pool and the session factory.

    Create one per process at startup and pass it to repositories;
    call ``close()`` on shutdown.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._session_factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            autoflush=False,
            expire_on_commit=False,  # Don't expire objects after commit
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "Database":
        return cls(create_db_engine(settings=settings))

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Session for read queries.

        Usage:
            async with db.session() as session:
                await session.execute(select(Item))
        """
        async with self._session_factory() as session:
            yield session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """
        Explicit transaction context manager.

        Usage:
            async with db.transaction() as session:
                session.add(item1)
                session.add(item2)
                # Commits at end, rollback on exception
        """
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    yield session
            except Exception as e:
                logger.warning(f"Transaction rolled back: {e}")
                raise

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def init_db(self, drop_all: bool = False) -> None:
        """
        Initialize database - create all tables.

        Args:
            drop_all: If True, drop all tables first (USE WITH CAUTION!)
        """
        async with self.engine.begin() as conn:
            if drop_all:
                logger.warning("Dropping all database tables!")
                await conn.run_sync(Base.metadata.drop_all)

            logger.info("Creating database tables...")
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")

    async def check_connection(self) -> bool:
        """
        Check if database connection is working.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Database connection verified")
            return True
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            return False

    def get_pool_stats(self) -> dict:
        """Connection pool statistics."""
        pool = self.engine.pool
        return {
            "pool": pool.status(),
            "dialect": self.engine.dialect.name,
        }

    async def close(self) -> None:
        """Dispose of the pool and close all connections."""
        logger.info("Closing database connections...")
        await self.engine.dispose()
        logger.info("Database connections closed")
