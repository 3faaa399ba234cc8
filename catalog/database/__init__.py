"""
Catalog Database Layer

Usage:
    from catalog.database import Database, ProductRepository

    db = Database.from_settings()
    await db.init_db()

    repo = ProductRepository(db)
    products = await repo.list_products(limit=10, offset=0)

    await db.close()
"""

# Models
from .models import (
    Base,
    Category,
    Product,
    ProductVariant,
    Review,
)

# Session management
from .session import (
    Database,
    create_db_engine,
    get_database_url,
)

# Repository
from .repository import (
    ProductRepository,
    StoreQueryFailed,
)

__all__ = [
    # Models
    "Base",
    "Category",
    "Product",
    "ProductVariant",
    "Review",
    # Session
    "Database",
    "create_db_engine",
    "get_database_url",
    # Repository
    "ProductRepository",
    "StoreQueryFailed",
]
