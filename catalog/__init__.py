"""
Product Catalog Service

Catalog API for products, categories, variants and reviews:
1. Reads go through a Redis read-through cache
2. The relational store (SQLAlchemy) stays the source of truth
3. Writes commit in a transaction, then invalidate affected cache keys
"""

__version__ = "0.1.0"
