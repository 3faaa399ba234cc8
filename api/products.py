"""
Product Catalog API

Endpoints:
- GET  /api/products                     - paginated product list
- GET  /api/products/{id}                - single product
- POST /api/products                     - create product with variants
- GET  /api/products/{id}/category       - the product's category
- GET  /api/products/{id}/reviews        - the product's reviews
- POST /api/products/{id}/reviews        - review a product
- GET  /api/products/{id}/variants       - the product's variants

Input is validated by the pydantic models before it reaches the catalog.
Store failures map to 409 (constraint violations) or 503.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from catalog.models import (
    Category,
    CreateProductInput,
    CreateReviewInput,
    Product,
    ProductVariant,
    Review,
)
from catalog.services.catalog import CatalogService
from api.dependencies import get_catalog


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/products", tags=["Products"])


async def _require_product(product_id: str, catalog: CatalogService) -> Product:
    product = await catalog.get_product(product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.get("", response_model=List[Product])
async def list_products(
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    fresh: bool = Query(False, description="Bypass the cache lookup"),
    catalog: CatalogService = Depends(get_catalog),
):
    """List active products, newest first."""
    return await catalog.list_products(limit=limit, offset=offset, fresh=fresh)


@router.get("/{product_id}", response_model=Product)
async def get_product(
    product_id: str,
    fresh: bool = Query(False, description="Bypass the cache lookup"),
    catalog: CatalogService = Depends(get_catalog),
):
    product = await catalog.get_product(product_id, fresh=fresh)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.post("", response_model=Product, status_code=201)
async def create_product(
    data: CreateProductInput,
    catalog: CatalogService = Depends(get_catalog),
):
    """Create a product and its variants in one transaction."""
    return await catalog.create_product(data)


@router.get("/{product_id}/category", response_model=Category)
async def get_product_category(
    product_id: str,
    catalog: CatalogService = Depends(get_catalog),
):
    product = await _require_product(product_id, catalog)
    category = await catalog.category_for(product)
    if category is None:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


@router.get("/{product_id}/reviews", response_model=List[Review])
async def get_product_reviews(
    product_id: str,
    catalog: CatalogService = Depends(get_catalog),
):
    product = await _require_product(product_id, catalog)
    return await catalog.reviews_for(product)


@router.post("/{product_id}/reviews", response_model=Review, status_code=201)
async def create_product_review(
    product_id: str,
    data: CreateReviewInput,
    catalog: CatalogService = Depends(get_catalog),
):
    review = await catalog.create_review(product_id, data)
    if review is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return review


@router.get("/{product_id}/variants", response_model=List[ProductVariant])
async def get_product_variants(
    product_id: str,
    catalog: CatalogService = Depends(get_catalog),
):
    product = await _require_product(product_id, catalog)
    return await catalog.variants_for(product)
