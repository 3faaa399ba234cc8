"""
Product Catalog - Domain Models

Records returned by the catalog (and stored in the cache as JSON), plus
the validated inputs accepted for writes.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


# =============================================================================
# RECORDS
# =============================================================================

class Category(BaseModel):
    """Product category."""
    id: str
    name: str
    description: Optional[str] = None
    parent_category_id: Optional[str] = None


class ProductVariant(BaseModel):
    """Color/size variant of a product."""
    id: str
    color: str
    size: str
    price: float
    stock: int


class Review(BaseModel):
    """Customer review."""
    id: str
    product_id: str
    user_id: str
    rating: float
    comment: Optional[str] = None
    created_at: datetime


class Product(BaseModel):
    """
    Product as served by the catalog.

    ``category_name`` and ``rating`` (average review rating, 0 without
    reviews) come from the joined query and are part of the cached value.
    """
    id: str
    name: str
    description: str
    price: float
    sku: Optional[str] = None
    brand: Optional[str] = None
    stock: int
    category_id: str
    category_name: Optional[str] = None
    rating: float = 0.0


# =============================================================================
# INPUTS
# =============================================================================

class ProductVariantInput(BaseModel):
    color: str = Field(..., min_length=1)
    size: str = Field(..., min_length=1)
    price: float = Field(..., gt=0)
    stock: int = Field(..., ge=0)


class CreateProductInput(BaseModel):
    """Input for creating a product together with its variants."""
    name: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10)
    price: float = Field(..., gt=0)
    sku: Optional[str] = None
    brand: Optional[str] = None
    stock: int = Field(..., ge=0)
    category_id: UUID = Field(..., description="Existing category id")
    variants: List[ProductVariantInput] = Field(default_factory=list)


class CreateReviewInput(BaseModel):
    """Input for reviewing a product."""
    user_id: str = Field(..., min_length=1)
    rating: float = Field(..., ge=1, le=5)
    comment: Optional[str] = None
