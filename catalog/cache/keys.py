"""
Cache key templates.

Keys are shared with other services reading the same Redis, so the
templates must not change. Templated queries whose instances cannot be
derived from a single mutation (paginated lists) are tracked in an
invalidation group.
"""

PRODUCTS_LIST = "products:{limit}:{offset}"
PRODUCT = "product:{id}"
CATEGORY = "category:{id}"
REVIEWS = "reviews:{product_id}"
VARIANTS = "variants:{product_id}"

# Negative lookup marker for PRODUCT
PRODUCT_ABSENT = "product:{id}:absent"

# Invalidation group holding every live PRODUCTS_LIST key
PRODUCT_LISTS_GROUP = "index:products"


def products_list_key(limit: int, offset: int) -> str:
    return PRODUCTS_LIST.format(limit=limit, offset=offset)


def product_key(product_id: str) -> str:
    return PRODUCT.format(id=product_id)


def product_absent_key(product_id: str) -> str:
    return PRODUCT_ABSENT.format(id=product_id)


def category_key(category_id: str) -> str:
    return CATEGORY.format(id=category_id)


def reviews_key(product_id: str) -> str:
    return REVIEWS.format(product_id=product_id)


def variants_key(product_id: str) -> str:
    return VARIANTS.format(product_id=product_id)
