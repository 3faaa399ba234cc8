"""Catalog services."""

from catalog.services.catalog import CatalogService

__all__ = ["CatalogService"]
