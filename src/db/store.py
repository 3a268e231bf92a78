# storage interface the services depend on; one adapter per backend implements it
from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from dataclasses import fields as dataclass_fields
from typing import Any, Dict, List, Mapping, Optional, Protocol, runtime_checkable

from db.models import (
    ArtisanProfile,
    CartItem,
    Category,
    Order,
    OrderItem,
    Product,
    Profile,
    Review,
)
from utils.config import Settings


@runtime_checkable
class OrderTransaction(Protocol):
    """
    Statements available inside ``Store.transaction()``.

    Every call runs on the same connection. The surrounding context manager
    commits when the block exits cleanly and rolls back on any exception.
    """

    async def insert_order(self, row: Mapping[str, Any]) -> Order:
        """Insert an order header. ConflictError when order_number is taken."""
        ...

    async def insert_order_item(self, row: Mapping[str, Any]) -> OrderItem:
        ...

    async def decrement_stock(self, product_id: str, quantity: int) -> int:
        """
        Take ``quantity`` units off a product and return the remaining stock.

        Raises NotFoundError for an unknown product and InsufficientStockError
        when the stock would go negative; the row is left unchanged in both cases.
        """
        ...

    async def restock(self, product_id: str, quantity: int) -> int:
        ...

    async def clear_cart(self, user_id: str) -> int:
        """Delete every cart row of the user, returning how many were removed."""
        ...

    async def get_order_for_update(self, order_id: str) -> Optional[Order]:
        """Read an order header and lock it for the rest of the transaction."""
        ...

    async def get_order_items(self, order_id: str) -> List[OrderItem]:
        ...

    async def get_order_item_for_update(self, item_id: str) -> Optional[OrderItem]:
        ...

    async def set_order_status(
        self, order_id: str, status: str, tracking_number: Optional[str] = None
    ) -> Order:
        ...

    async def set_order_item_status(
        self, item_id: str, fields: Mapping[str, Any]
    ) -> OrderItem:
        ...


@runtime_checkable
class Store(Protocol):
    """Everything the services need from a relational backend."""

    # profiles
    async def get_profile(self, user_id: str) -> Optional[Profile]:
        ...

    async def insert_profile(self, row: Mapping[str, Any]) -> Profile:
        ...

    async def update_profile(
        self, user_id: str, fields: Mapping[str, Any]
    ) -> Optional[Profile]:
        ...

    # artisan profiles
    async def find_artisan_profile(self, user_id: str) -> Optional[ArtisanProfile]:
        ...

    async def get_artisan_profile_by_id(
        self, artisan_id: str
    ) -> Optional[ArtisanProfile]:
        ...

    async def insert_artisan_profile(self, row: Mapping[str, Any]) -> ArtisanProfile:
        """Insert a full artisan profile row. ConflictError if user_id already has one."""
        ...

    async def update_artisan_profile(
        self, user_id: str, fields: Mapping[str, Any]
    ) -> Optional[ArtisanProfile]:
        """Patch the given columns only; None when the user has no profile."""
        ...

    # catalogue
    async def list_categories(self, include_inactive: bool = False) -> List[Category]:
        ...

    async def get_product(self, product_id: str) -> Optional[Product]:
        ...

    async def insert_product(self, row: Mapping[str, Any]) -> Product:
        ...

    async def list_products(
        self,
        category_slug: Optional[str] = None,
        artisan_id: Optional[str] = None,
        is_featured: Optional[bool] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Product]:
        """
        Newest first, joined with category name/slug and the shop name.

        ``search`` matches name or description case-insensitively, or an
        exact tag. Filters left as None are not applied.
        """
        ...

    async def update_product(
        self, product_id: str, fields: Mapping[str, Any]
    ) -> Optional[Product]:
        ...

    async def delete_product(self, product_id: str) -> bool:
        """False when absent. ConflictError when order items still reference it."""
        ...

    async def increment_product_views(self, product_id: str) -> Optional[int]:
        """Add one view and return the new count; None for an unknown product."""
        ...

    async def get_category_by_slug(self, slug: str) -> Optional[Category]:
        """Active categories only."""
        ...

    # reviews
    async def list_product_reviews(
        self, product_id: str, limit: Optional[int] = None, offset: Optional[int] = None
    ) -> List[Review]:
        """Newest first, with the reviewer's name and avatar."""
        ...

    async def insert_review(self, row: Mapping[str, Any]) -> Review:
        ...

    async def get_order_item(self, item_id: str) -> Optional[OrderItem]:
        ...

    # cart
    async def list_cart_items(self, user_id: str) -> List[CartItem]:
        ...

    async def add_to_cart(self, user_id: str, product_id: str, quantity: int) -> CartItem:
        ...

    async def set_cart_quantity(
        self, user_id: str, product_id: str, quantity: int
    ) -> Optional[CartItem]:
        ...

    async def remove_from_cart(self, user_id: str, product_id: str) -> bool:
        ...

    async def clear_cart(self, user_id: str) -> int:
        ...

    # orders
    async def get_order(self, order_id: str) -> Optional[Order]:
        ...

    async def get_order_items(self, order_id: str) -> List[OrderItem]:
        """Items joined with product name/images and the artisan's shop name."""
        ...

    async def list_orders(
        self, customer_id: str, limit: Optional[int] = None, offset: Optional[int] = None
    ) -> List[Order]:
        """Newest first, each carrying item_count and product_names."""
        ...

    async def list_artisan_order_items(self, artisan_id: str) -> List[OrderItem]:
        ...

    def transaction(self) -> AbstractAsyncContextManager[OrderTransaction]:
        ...

    async def close(self) -> None:
        ...


async def open_store(settings: Settings) -> Store:
    """Create the adapter selected by ``settings.backend``."""
    if settings.backend == "postgres":
        from db.postgres_store import PostgresStore

        return await PostgresStore.create(settings)

    from db.sqlite_store import SqliteStore

    return await SqliteStore.create(settings)


def _columns(model) -> frozenset:
    return frozenset(f.name for f in dataclass_fields(model))


# real columns per table; joined display fields are excluded
TABLE_COLUMNS: Dict[str, frozenset] = {
    "profiles": _columns(Profile),
    "artisan_profiles": _columns(ArtisanProfile),
    "products": _columns(Product)
    - {"category_name", "category_slug", "artisan_shop_name"},
    "reviews": _columns(Review) - {"customer_name", "customer_avatar"},
    "orders": _columns(Order) - {"item_count", "product_names"},
    "order_items": _columns(OrderItem)
    - {"product_name", "product_images", "artisan_shop_name", "order_number"},
}


def checked_columns(table: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Return ``fields`` as a dict after making sure every key is a column of
    ``table``. Column names are interpolated into SQL, so anything else is a
    programming error.
    """
    unknown = set(fields) - TABLE_COLUMNS[table]
    if unknown:
        raise ValueError(f"unknown {table} columns: {sorted(unknown)}")
    return dict(fields)
