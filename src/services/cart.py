# shopping cart operations and the cart -> checkout line conversion
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from db.errors import NotFoundError, ValidationError
from db.models import CartItem
from db.store import Store
from utils.pure import to_money


def _check_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(
            "quantity must be an integer",
            [{"field": "quantity", "message": "must be an integer"}],
        )
    return quantity


async def list_cart_items(store: Store, user_id: str) -> List[CartItem]:
    return await store.list_cart_items(user_id)


async def add_to_cart(
    store: Store, user_id: str, product_id: str, quantity: int = 1
) -> CartItem:
    """Add units of a product; adding a product already in the cart increments it."""
    if _check_quantity(quantity) < 1:
        raise ValidationError(
            "quantity must be at least 1",
            [{"field": "quantity", "message": "must be >= 1"}],
        )
    product = await store.get_product(product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    if not product.is_active:
        raise ValidationError(f"Product {product.name} is no longer available")
    return await store.add_to_cart(user_id, product_id, quantity)


async def update_cart_item(
    store: Store, user_id: str, product_id: str, quantity: int
) -> Optional[CartItem]:
    """Set the quantity of a cart row. Zero or less removes it and returns None."""
    if _check_quantity(quantity) <= 0:
        await remove_from_cart(store, user_id, product_id)
        return None
    item = await store.set_cart_quantity(user_id, product_id, quantity)
    if item is None:
        raise NotFoundError(f"Product {product_id} is not in the cart")
    return item


async def remove_from_cart(store: Store, user_id: str, product_id: str) -> None:
    if not await store.remove_from_cart(user_id, product_id):
        raise NotFoundError(f"Product {product_id} is not in the cart")


async def clear_cart(store: Store, user_id: str) -> int:
    return await store.clear_cart(user_id)


def checkout_lines(items: List[CartItem]) -> List[Dict[str, Any]]:
    """Turn cart rows into the ``items`` payload ``place_order`` expects."""
    return [
        {
            "product_id": item.product_id,
            "artisan_id": item.artisan_id,
            "quantity": item.quantity,
            "unit_price": to_money(item.price),
        }
        for item in items
    ]


def cart_subtotal(items: List[CartItem]) -> Decimal:
    return sum((to_money(item.price) * item.quantity for item in items), Decimal("0.00"))
