"""
Repository Pattern for Catalog Data Access

Every query the catalog issues against the relational store. Rows are
mapped to the pydantic records in ``catalog.models``; callers never see
ORM objects.

Usage:
    repo = ProductRepository(db)
    products = await repo.list_products(limit=10, offset=0)
    product = await repo.create_product(CreateProductInput(...))
"""

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from catalog import models
from .models import Category, Product, ProductVariant, Review
from .session import Database

logger = logging.getLogger(__name__)


class StoreQueryFailed(Exception):
    """A store query or transaction failed. Always surfaced to the caller."""

    def __init__(self, operation: str, cause: SQLAlchemyError):
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.is_integrity_error = isinstance(cause, IntegrityError)


@contextmanager
def _store_errors(operation: str, **context) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"Store query failed during {operation} {context}: {e}")
        raise StoreQueryFailed(operation, e) from e


# =============================================================================
# ROW MAPPING
# =============================================================================

def _to_product(product: Product, category_name: Optional[str], average_rating) -> models.Product:
    return models.Product(
        id=product.id,
        name=product.name,
        description=product.description,
        price=product.price,
        sku=product.sku,
        brand=product.brand,
        stock=product.stock,
        category_id=product.category_id,
        category_name=category_name,
        rating=float(average_rating or 0),
    )


def _to_category(category: Category) -> models.Category:
    return models.Category(
        id=category.id,
        name=category.name,
        description=category.description,
        parent_category_id=category.parent_category_id,
    )


def _to_review(review: Review) -> models.Review:
    return models.Review(
        id=review.id,
        product_id=review.product_id,
        user_id=review.user_id,
        rating=review.rating,
        comment=review.comment,
        created_at=review.created_at,
    )


def _to_variant(variant: ProductVariant) -> models.ProductVariant:
    return models.ProductVariant(
        id=variant.id,
        color=variant.color,
        size=variant.size,
        price=variant.price,
        stock=variant.stock,
    )


class ProductRepository:
    """Store access for products and their categories, variants and reviews."""

    def __init__(self, db: Database):
        self._db = db

    def _product_query(self):
        """Active products with category name and average rating."""
        average_rating = func.coalesce(func.avg(Review.rating), 0).label("average_rating")
        return (
            select(Product, Category.name.label("category_name"), average_rating)
            .outerjoin(Category, Category.id == Product.category_id)
            .outerjoin(Review, Review.product_id == Product.id)
            .where(Product.is_active.is_(True))
            .group_by(Product.id, Category.id)
        )

    # =========================================================================
    # READS
    # =========================================================================

    async def list_products(self, limit: int = 10, offset: int = 0) -> List[models.Product]:
        """Page of active products, newest first."""
        stmt = (
            self._product_query()
            .order_by(Product.created_at.desc(), Product.id)
            .limit(limit)
            .offset(offset)
        )
        with _store_errors("list_products", limit=limit, offset=offset):
            async with self._db.session() as session:
                rows = (await session.execute(stmt)).all()
        return [_to_product(*row) for row in rows]

    async def get_product(self, product_id: str) -> Optional[models.Product]:
        """Single active product, or None."""
        stmt = self._product_query().where(Product.id == product_id)
        with _store_errors("get_product", product_id=product_id):
            async with self._db.session() as session:
                row = (await session.execute(stmt)).first()
        if row is None:
            return None
        return _to_product(*row)

    async def get_category(self, category_id: str) -> Optional[models.Category]:
        with _store_errors("get_category", category_id=category_id):
            async with self._db.session() as session:
                category = await session.get(Category, category_id)
        if category is None:
            return None
        return _to_category(category)

    async def get_reviews(self, product_id: str) -> List[models.Review]:
        stmt = (
            select(Review)
            .where(Review.product_id == product_id)
            .order_by(Review.created_at, Review.id)
        )
        with _store_errors("get_reviews", product_id=product_id):
            async with self._db.session() as session:
                reviews = (await session.scalars(stmt)).all()
        return [_to_review(r) for r in reviews]

    async def get_variants(self, product_id: str) -> List[models.ProductVariant]:
        stmt = (
            select(ProductVariant)
            .where(ProductVariant.product_id == product_id)
            .order_by(ProductVariant.created_at, ProductVariant.id)
        )
        with _store_errors("get_variants", product_id=product_id):
            async with self._db.session() as session:
                variants = (await session.scalars(stmt)).all()
        return [_to_variant(v) for v in variants]

    # =========================================================================
    # WRITES
    # =========================================================================

    async def create_product(self, data: models.CreateProductInput) -> models.Product:
        """
        Insert a product and its variants in one transaction.

        Either the product and all variants are committed, or nothing is.
        """
        with _store_errors("create_product", name=data.name):
            async with self._db.transaction() as session:
                product = Product(
                    name=data.name,
                    description=data.description,
                    price=data.price,
                    sku=data.sku,
                    brand=data.brand,
                    stock=data.stock,
                    category_id=str(data.category_id),
                )
                session.add(product)
                await session.flush()

                for variant in data.variants:
                    session.add(ProductVariant(
                        product_id=product.id,
                        color=variant.color,
                        size=variant.size,
                        price=variant.price,
                        stock=variant.stock,
                    ))
                await session.flush()

                category = await session.get(Category, product.category_id)
                created = _to_product(
                    product,
                    category.name if category else None,
                    0,
                )

        logger.info(f"Created product {created.id} with {len(data.variants)} variants")
        return created

    async def create_review(
        self,
        product_id: str,
        data: models.CreateReviewInput,
    ) -> models.Review:
        """Insert a review for an existing product."""
        with _store_errors("create_review", product_id=product_id):
            async with self._db.transaction() as session:
                review = Review(
                    product_id=product_id,
                    user_id=data.user_id,
                    rating=data.rating,
                    comment=data.comment,
                )
                session.add(review)
                await session.flush()
                created = _to_review(review)

        logger.info(f"Created review {created.id} for product {product_id}")
        return created
