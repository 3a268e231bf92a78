# categories, catalogue browsing and product management for artisans
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from db.errors import NotFoundError, ValidationError
from db.models import Category, Product
from db.store import Store
from utils.logger import get_logger
from utils.pure import to_money

_logger = get_logger(__name__)

PRODUCT_FIELDS = frozenset(
    {
        "category_id",
        "name",
        "description",
        "price",
        "original_price",
        "stock_quantity",
        "images",
        "tags",
        "sku",
        "is_active",
        "is_featured",
    }
)


async def list_categories(store: Store, include_inactive: bool = False) -> List[Category]:
    return await store.list_categories(include_inactive)


async def get_product(store: Store, product_id: str) -> Product:
    product = await store.get_product(product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def _product_errors(data: Mapping[str, Any]) -> List[Dict[str, str]]:
    errors = []
    for name in ("category_id", "name", "description"):
        value = data.get(name)
        if not isinstance(value, str) or not value.strip():
            errors.append({"field": name, "message": "is required"})
    for name in ("price", "original_price"):
        if data.get(name) is None:
            if name == "price":
                errors.append({"field": name, "message": "is required"})
            continue
        try:
            if to_money(data[name]) < 0:
                errors.append({"field": name, "message": "must be >= 0"})
        except ValueError:
            errors.append({"field": name, "message": "must be a number"})
    stock = data.get("stock_quantity", 0)
    if isinstance(stock, bool) or not isinstance(stock, int) or stock < 0:
        errors.append({"field": "stock_quantity", "message": "must be a non-negative integer"})
    return errors


async def create_product(
    store: Store, artisan_user_id: str, data: Mapping[str, Any]
) -> Product:
    """List a new product in the shop owned by ``artisan_user_id``."""
    artisan = await store.find_artisan_profile(artisan_user_id)
    if artisan is None:
        raise NotFoundError(f"User {artisan_user_id} has no artisan profile")

    fields = {k: v for k, v in data.items() if k in PRODUCT_FIELDS}
    errors = _product_errors(fields)
    if errors:
        raise ValidationError(
            "Invalid product: " + ", ".join(f"{e['field']} {e['message']}" for e in errors),
            errors,
        )

    fields["price"] = to_money(fields["price"])
    if fields.get("original_price") is not None:
        fields["original_price"] = to_money(fields["original_price"])
    fields.setdefault("stock_quantity", 0)
    fields.setdefault("images", [])
    fields["artisan_id"] = artisan.id
    product = await store.insert_product(fields)
    _logger.info(f"Artisan {artisan.shop_name} listed product {product.name}")
    return product


def check_paging(limit: Optional[int], offset: Optional[int]) -> None:
    errors = [
        {"field": name, "message": "must be a non-negative integer"}
        for name, value in (("limit", limit), ("offset", offset))
        if value is not None
        and (isinstance(value, bool) or not isinstance(value, int) or value < 0)
    ]
    if errors:
        raise ValidationError("Invalid paging: " + ", ".join(e["field"] for e in errors), errors)


async def list_products(
    store: Store,
    category: Optional[str] = None,
    artisan_id: Optional[str] = None,
    is_featured: Optional[bool] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> List[Product]:
    """
    Browse the catalogue, newest first.

    ``category`` is a category slug. ``search`` matches the name or
    description, or an exact tag. Unset filters are ignored.
    """
    check_paging(limit, offset)
    return await store.list_products(
        category_slug=category,
        artisan_id=artisan_id,
        is_featured=is_featured,
        is_active=is_active,
        search=search.strip() if search else None,
        limit=limit,
        offset=offset,
    )


async def get_category_by_slug(store: Store, slug: str) -> Category:
    category = await store.get_category_by_slug(slug)
    if category is None:
        raise NotFoundError(f"Category {slug!r} not found")
    return category


async def record_product_view(store: Store, product_id: str) -> int:
    views = await store.increment_product_views(product_id)
    if views is None:
        raise NotFoundError(f"Product {product_id} not found")
    return views


async def _owned_product(store: Store, artisan_user_id: str, product_id: str) -> Product:
    artisan = await store.find_artisan_profile(artisan_user_id)
    if artisan is None:
        raise NotFoundError(f"User {artisan_user_id} has no artisan profile")
    product = await store.get_product(product_id)
    # another shop's product is reported as missing
    if product is None or product.artisan_id != artisan.id:
        raise NotFoundError(f"Product {product_id} not found")
    return product


async def update_product(
    store: Store, artisan_user_id: str, product_id: str, updates: Mapping[str, Any]
) -> Product:
    """
    Patch a product of the artisan's own shop.

    Only listing fields may change; the merged result must still be a valid
    product. Unknown keys are ignored.
    """
    product = await _owned_product(store, artisan_user_id, product_id)
    fields = {k: v for k, v in updates.items() if k in PRODUCT_FIELDS}
    if not fields:
        return product

    merged = {name: getattr(product, name) for name in PRODUCT_FIELDS}
    merged.update(fields)
    errors = [e for e in _product_errors(merged) if e["field"] in fields]
    if errors:
        raise ValidationError(
            "Invalid product: " + ", ".join(f"{e['field']} {e['message']}" for e in errors),
            errors,
        )
    for name in ("price", "original_price"):
        if fields.get(name) is not None:
            fields[name] = to_money(fields[name])

    updated = await store.update_product(product_id, fields)
    if updated is None:
        raise NotFoundError(f"Product {product_id} not found")
    _logger.info(f"Updated product {updated.name}: {sorted(fields)}")
    return updated


async def delete_product(store: Store, artisan_user_id: str, product_id: str) -> None:
    """
    Remove a product of the artisan's own shop.

    Products that appear in any order raise ConflictError; deactivate them
    with ``update_product(..., {"is_active": False})`` instead.
    """
    product = await _owned_product(store, artisan_user_id, product_id)
    if not await store.delete_product(product_id):
        raise NotFoundError(f"Product {product_id} not found")
    _logger.info(f"Deleted product {product.name}")
