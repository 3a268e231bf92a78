# aiosqlite implementation of db.store.Store
from __future__ import annotations

import asyncio
import sqlite3
from contextlib import asynccontextmanager, contextmanager
from typing import Any, Dict, List, Mapping, Optional

import aiosqlite

from db.database import connect, encode_row, encode_value
from db.errors import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    TransactionError,
)
from db.models import (
    ArtisanProfile,
    CartItem,
    Category,
    Order,
    OrderItem,
    Product,
    Profile,
    Review,
    from_row,
)
from db.store import checked_columns
from utils.config import Settings
from utils.logger import get_logger
from utils.pure import new_id, utc_now

_logger = get_logger(__name__)

_ORDER_ITEM_SELECT = """
    SELECT oi.*,
           p.name AS product_name,
           p.images AS product_images,
           ap.shop_name AS artisan_shop_name
    FROM order_items oi
    JOIN products p ON oi.product_id = p.id
    JOIN artisan_profiles ap ON oi.artisan_id = ap.id
"""

_CART_SELECT = """
    SELECT ci.*,
           p.name AS product_name,
           p.price,
           p.images,
           p.stock_quantity,
           p.artisan_id,
           ap.shop_name AS artisan_shop_name
    FROM cart_items ci
    JOIN products p ON ci.product_id = p.id
    JOIN artisan_profiles ap ON p.artisan_id = ap.id
"""

_PRODUCT_SELECT = """
    SELECT p.*,
           c.name AS category_name,
           c.slug AS category_slug,
           ap.shop_name AS artisan_shop_name
    FROM products p
    LEFT JOIN categories c ON p.category_id = c.id
    LEFT JOIN artisan_profiles ap ON p.artisan_id = ap.id
"""

_REVIEW_SELECT = """
    SELECT r.*,
           pr.first_name || ' ' || pr.last_name AS customer_name,
           pr.avatar_url AS customer_avatar
    FROM reviews r
    JOIN profiles pr ON r.customer_id = pr.id
"""


@contextmanager
def _translate_errors(action: str):
    """Re-raise sqlite errors as the core error taxonomy."""
    try:
        yield
    except sqlite3.IntegrityError as exc:
        message = str(exc)
        if message.startswith("UNIQUE constraint failed"):
            constraint = message.split(":", 1)[-1].strip()
            raise ConflictError(f"{action}: duplicate {constraint}", constraint) from exc
        if message.startswith("FOREIGN KEY constraint failed"):
            raise NotFoundError(f"{action}: referenced record does not exist") from exc
        raise TransactionError(f"{action}: {message}") from exc
    except sqlite3.OperationalError as exc:
        message = str(exc)
        busy = "locked" in message or "busy" in message
        raise TransactionError(f"{action}: {message}", retryable=busy) from exc
    except sqlite3.Error as exc:
        raise TransactionError(f"{action}: {exc}") from exc
    except asyncio.TimeoutError as exc:
        raise TransactionError(f"{action}: timed out", retryable=True) from exc


async def _fetchone(conn: aiosqlite.Connection, sql: str, params=()) -> Optional[dict]:
    cur = await conn.execute(sql, params)
    row = await cur.fetchone()
    await cur.close()
    return dict(row) if row else None


async def _fetchall(conn: aiosqlite.Connection, sql: str, params=()) -> List[dict]:
    cur = await conn.execute(sql, params)
    rows = await cur.fetchall()
    await cur.close()
    return [dict(row) for row in rows]


async def _insert(conn: aiosqlite.Connection, table: str, row: Mapping[str, Any]) -> str:
    values = encode_row(checked_columns(table, row))
    columns = ", ".join(values)
    marks = ", ".join("?" for _ in values)
    await conn.execute(
        f"INSERT INTO {table} ({columns}) VALUES ({marks});", tuple(values.values())
    )
    return values["id"]


async def _update(
    conn: aiosqlite.Connection,
    table: str,
    key_column: str,
    key: str,
    fields: Mapping[str, Any],
) -> int:
    values = dict(checked_columns(table, fields))
    values.setdefault("updated_at", utc_now())
    values = encode_row(values)
    assignments = ", ".join(f"{column} = ?" for column in values)
    cur = await conn.execute(
        f"UPDATE {table} SET {assignments} WHERE {key_column} = ?;",
        (*values.values(), key),
    )
    return cur.rowcount


def _stamped(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Fill id and timestamps the caller left out."""
    stamped = dict(row)
    now = utc_now()
    stamped.setdefault("id", new_id())
    stamped.setdefault("created_at", now)
    stamped.setdefault("updated_at", now)
    return stamped


class SqliteOrderTransaction:
    """Statements bound to one connection inside ``BEGIN IMMEDIATE``."""

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    async def insert_order(self, row: Mapping[str, Any]) -> Order:
        with _translate_errors("insert order"):
            order_id = await _insert(self._conn, "orders", _stamped(row))
            found = await _fetchone(
                self._conn, "SELECT * FROM orders WHERE id = ?;", (order_id,)
            )
        return from_row(Order, found)

    async def insert_order_item(self, row: Mapping[str, Any]) -> OrderItem:
        with _translate_errors("insert order item"):
            item_id = await _insert(self._conn, "order_items", _stamped(row))
            found = await _fetchone(
                self._conn, "SELECT * FROM order_items WHERE id = ?;", (item_id,)
            )
        return from_row(OrderItem, found)

    async def decrement_stock(self, product_id: str, quantity: int) -> int:
        with _translate_errors("decrement stock"):
            cur = await self._conn.execute(
                """
                UPDATE products
                SET stock_quantity = stock_quantity - ?, updated_at = ?
                WHERE id = ? AND stock_quantity >= ?;
                """,
                (quantity, encode_value("updated_at", utc_now()), product_id, quantity),
            )
            updated = cur.rowcount
            row = await _fetchone(
                self._conn,
                "SELECT stock_quantity FROM products WHERE id = ?;",
                (product_id,),
            )
        if row is None:
            raise NotFoundError(f"Product {product_id} not found")
        if updated != 1:
            raise InsufficientStockError(product_id, quantity, row["stock_quantity"])
        return row["stock_quantity"]

    async def restock(self, product_id: str, quantity: int) -> int:
        with _translate_errors("restock"):
            await self._conn.execute(
                """
                UPDATE products
                SET stock_quantity = stock_quantity + ?, updated_at = ?
                WHERE id = ?;
                """,
                (quantity, encode_value("updated_at", utc_now()), product_id),
            )
            row = await _fetchone(
                self._conn,
                "SELECT stock_quantity FROM products WHERE id = ?;",
                (product_id,),
            )
        if row is None:
            raise NotFoundError(f"Product {product_id} not found")
        return row["stock_quantity"]

    async def clear_cart(self, user_id: str) -> int:
        with _translate_errors("clear cart"):
            cur = await self._conn.execute(
                "DELETE FROM cart_items WHERE user_id = ?;", (user_id,)
            )
        return cur.rowcount

    async def get_order_for_update(self, order_id: str) -> Optional[Order]:
        # BEGIN IMMEDIATE already holds the database write lock
        with _translate_errors("get order"):
            row = await _fetchone(
                self._conn, "SELECT * FROM orders WHERE id = ?;", (order_id,)
            )
        return from_row(Order, row) if row else None

    async def get_order_items(self, order_id: str) -> List[OrderItem]:
        with _translate_errors("get order items"):
            rows = await _fetchall(
                self._conn,
                "SELECT * FROM order_items WHERE order_id = ? ORDER BY rowid;",
                (order_id,),
            )
        return [from_row(OrderItem, row) for row in rows]

    async def get_order_item_for_update(self, item_id: str) -> Optional[OrderItem]:
        with _translate_errors("get order item"):
            row = await _fetchone(
                self._conn, "SELECT * FROM order_items WHERE id = ?;", (item_id,)
            )
        return from_row(OrderItem, row) if row else None

    async def set_order_status(
        self, order_id: str, status: str, tracking_number: Optional[str] = None
    ) -> Order:
        fields: Dict[str, Any] = {"status": status}
        if tracking_number is not None:
            fields["tracking_number"] = tracking_number
        with _translate_errors("update order status"):
            updated = await _update(self._conn, "orders", "id", order_id, fields)
            row = await _fetchone(
                self._conn, "SELECT * FROM orders WHERE id = ?;", (order_id,)
            )
        if not updated or row is None:
            raise NotFoundError(f"Order {order_id} not found")
        return from_row(Order, row)

    async def set_order_item_status(
        self, item_id: str, fields: Mapping[str, Any]
    ) -> OrderItem:
        with _translate_errors("update order item"):
            updated = await _update(self._conn, "order_items", "id", item_id, fields)
            row = await _fetchone(
                self._conn, "SELECT * FROM order_items WHERE id = ?;", (item_id,)
            )
        if not updated or row is None:
            raise NotFoundError(f"Order item {item_id} not found")
        return from_row(OrderItem, row)


class SqliteStore:
    """Store backed by a single sqlite file; each call opens its own connection."""

    def __init__(self, path: str, timeout: float = 5.0):
        self.path = path
        self.timeout = timeout

    @classmethod
    async def create(cls, settings: Settings) -> "SqliteStore":
        store = cls(settings.sqlite_path, settings.sqlite_timeout)
        # touch the file so the schema exists before the first request
        async with store._connect():
            pass
        return store

    def _connect(self):
        return connect(self.path, timeout=self.timeout)

    async def close(self) -> None:
        return None

    # ---------------------------
    # Profiles
    # ---------------------------

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        async with self._connect() as conn:
            with _translate_errors("get profile"):
                row = await _fetchone(
                    conn, "SELECT * FROM profiles WHERE id = ?;", (user_id,)
                )
        return from_row(Profile, row) if row else None

    async def insert_profile(self, row: Mapping[str, Any]) -> Profile:
        async with self._connect() as conn:
            with _translate_errors("insert profile"):
                profile_id = await _insert(conn, "profiles", _stamped(row))
                found = await _fetchone(
                    conn, "SELECT * FROM profiles WHERE id = ?;", (profile_id,)
                )
        return from_row(Profile, found)

    async def update_profile(
        self, user_id: str, fields: Mapping[str, Any]
    ) -> Optional[Profile]:
        async with self._connect() as conn:
            with _translate_errors("update profile"):
                updated = await _update(conn, "profiles", "id", user_id, fields)
                row = await _fetchone(
                    conn, "SELECT * FROM profiles WHERE id = ?;", (user_id,)
                )
        if not updated or row is None:
            return None
        return from_row(Profile, row)

    # ---------------------------
    # Artisan profiles
    # ---------------------------

    async def find_artisan_profile(self, user_id: str) -> Optional[ArtisanProfile]:
        async with self._connect() as conn:
            with _translate_errors("get artisan profile"):
                row = await _fetchone(
                    conn,
                    "SELECT * FROM artisan_profiles WHERE user_id = ?;",
                    (user_id,),
                )
        return from_row(ArtisanProfile, row) if row else None

    async def get_artisan_profile_by_id(
        self, artisan_id: str
    ) -> Optional[ArtisanProfile]:
        async with self._connect() as conn:
            with _translate_errors("get artisan profile"):
                row = await _fetchone(
                    conn, "SELECT * FROM artisan_profiles WHERE id = ?;", (artisan_id,)
                )
        return from_row(ArtisanProfile, row) if row else None

    async def insert_artisan_profile(self, row: Mapping[str, Any]) -> ArtisanProfile:
        async with self._connect() as conn:
            with _translate_errors("insert artisan profile"):
                artisan_id = await _insert(conn, "artisan_profiles", _stamped(row))
                found = await _fetchone(
                    conn, "SELECT * FROM artisan_profiles WHERE id = ?;", (artisan_id,)
                )
        return from_row(ArtisanProfile, found)

    async def update_artisan_profile(
        self, user_id: str, fields: Mapping[str, Any]
    ) -> Optional[ArtisanProfile]:
        async with self._connect() as conn:
            with _translate_errors("update artisan profile"):
                updated = await _update(
                    conn, "artisan_profiles", "user_id", user_id, fields
                )
                row = await _fetchone(
                    conn,
                    "SELECT * FROM artisan_profiles WHERE user_id = ?;",
                    (user_id,),
                )
        if not updated or row is None:
            return None
        return from_row(ArtisanProfile, row)

    # ---------------------------
    # Catalogue
    # ---------------------------

    async def list_categories(self, include_inactive: bool = False) -> List[Category]:
        sql = "SELECT * FROM categories"
        if not include_inactive:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY sort_order, name;"
        async with self._connect() as conn:
            with _translate_errors("list categories"):
                rows = await _fetchall(conn, sql)
        return [from_row(Category, row) for row in rows]

    async def get_product(self, product_id: str) -> Optional[Product]:
        async with self._connect() as conn:
            with _translate_errors("get product"):
                row = await _fetchone(
                    conn, "SELECT * FROM products WHERE id = ?;", (product_id,)
                )
        return from_row(Product, row) if row else None

    async def insert_product(self, row: Mapping[str, Any]) -> Product:
        async with self._connect() as conn:
            with _translate_errors("insert product"):
                product_id = await _insert(conn, "products", _stamped(row))
                found = await _fetchone(
                    conn, "SELECT * FROM products WHERE id = ?;", (product_id,)
                )
        return from_row(Product, found)

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
        clauses: List[str] = []
        params: List[Any] = []
        if category_slug:
            clauses.append("c.slug = ?")
            params.append(category_slug)
        if artisan_id:
            clauses.append("p.artisan_id = ?")
            params.append(artisan_id)
        if is_featured is not None:
            clauses.append("p.is_featured = ?")
            params.append(int(is_featured))
        if is_active is not None:
            clauses.append("p.is_active = ?")
            params.append(int(is_active))
        if search:
            # LIKE is case-insensitive for ASCII in sqlite
            clauses.append(
                "(p.name LIKE ? OR p.description LIKE ?"
                " OR EXISTS (SELECT 1 FROM json_each(p.tags) WHERE json_each.value = ?))"
            )
            pattern = f"%{search}%"
            params.extend([pattern, pattern, search])
        where = " WHERE " + " AND ".join(clauses) if clauses else ""
        params.extend([-1 if limit is None else limit, offset or 0])
        async with self._connect() as conn:
            with _translate_errors("list products"):
                rows = await _fetchall(
                    conn,
                    _PRODUCT_SELECT
                    + where
                    + " ORDER BY p.created_at DESC, p.rowid DESC LIMIT ? OFFSET ?;",
                    tuple(params),
                )
        return [from_row(Product, row) for row in rows]

    async def update_product(
        self, product_id: str, fields: Mapping[str, Any]
    ) -> Optional[Product]:
        async with self._connect() as conn:
            with _translate_errors("update product"):
                updated = await _update(conn, "products", "id", product_id, fields)
                row = await _fetchone(
                    conn, "SELECT * FROM products WHERE id = ?;", (product_id,)
                )
        if not updated or row is None:
            return None
        return from_row(Product, row)

    async def delete_product(self, product_id: str) -> bool:
        async with self._connect() as conn:
            with _translate_errors("delete product"):
                try:
                    cur = await conn.execute(
                        "DELETE FROM products WHERE id = ?;", (product_id,)
                    )
                except sqlite3.IntegrityError as exc:
                    # order_items keep a plain reference to the product
                    raise ConflictError(
                        f"delete product: product {product_id} has been ordered",
                        "order_items.product_id",
                    ) from exc
        return cur.rowcount > 0

    async def increment_product_views(self, product_id: str) -> Optional[int]:
        async with self._connect() as conn:
            with _translate_errors("increment product views"):
                cur = await conn.execute(
                    """
                    UPDATE products SET views_count = COALESCE(views_count, 0) + 1
                    WHERE id = ?;
                    """,
                    (product_id,),
                )
                if cur.rowcount == 0:
                    return None
                row = await _fetchone(
                    conn, "SELECT views_count FROM products WHERE id = ?;", (product_id,)
                )
        return row["views_count"]

    async def get_category_by_slug(self, slug: str) -> Optional[Category]:
        async with self._connect() as conn:
            with _translate_errors("get category"):
                row = await _fetchone(
                    conn,
                    "SELECT * FROM categories WHERE slug = ? AND is_active = 1;",
                    (slug,),
                )
        return from_row(Category, row) if row else None

    # ---------------------------
    # Reviews
    # ---------------------------

    async def list_product_reviews(
        self, product_id: str, limit: Optional[int] = None, offset: Optional[int] = None
    ) -> List[Review]:
        async with self._connect() as conn:
            with _translate_errors("list reviews"):
                rows = await _fetchall(
                    conn,
                    _REVIEW_SELECT
                    + """
                    WHERE r.product_id = ?
                    ORDER BY r.created_at DESC, r.rowid DESC
                    LIMIT ? OFFSET ?;
                    """,
                    (product_id, -1 if limit is None else limit, offset or 0),
                )
        return [from_row(Review, row) for row in rows]

    async def insert_review(self, row: Mapping[str, Any]) -> Review:
        async with self._connect() as conn:
            with _translate_errors("insert review"):
                review_id = await _insert(conn, "reviews", _stamped(row))
                found = await _fetchone(
                    conn, _REVIEW_SELECT + " WHERE r.id = ?;", (review_id,)
                )
        return from_row(Review, found)

    # ---------------------------
    # Cart
    # ---------------------------

    async def list_cart_items(self, user_id: str) -> List[CartItem]:
        async with self._connect() as conn:
            with _translate_errors("list cart"):
                rows = await _fetchall(
                    conn,
                    _CART_SELECT + " WHERE ci.user_id = ? ORDER BY ci.created_at DESC;",
                    (user_id,),
                )
        return [from_row(CartItem, row) for row in rows]

    async def _get_cart_item(
        self, conn: aiosqlite.Connection, user_id: str, product_id: str
    ) -> Optional[CartItem]:
        row = await _fetchone(
            conn,
            _CART_SELECT + " WHERE ci.user_id = ? AND ci.product_id = ?;",
            (user_id, product_id),
        )
        return from_row(CartItem, row) if row else None

    async def add_to_cart(self, user_id: str, product_id: str, quantity: int) -> CartItem:
        now = encode_value("updated_at", utc_now())
        async with self._connect() as conn:
            with _translate_errors("add to cart"):
                await conn.execute(
                    """
                    INSERT INTO cart_items(id, user_id, product_id, quantity,
                                           created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id, product_id)
                    DO UPDATE SET quantity = cart_items.quantity + excluded.quantity,
                                  updated_at = excluded.updated_at;
                    """,
                    (new_id(), user_id, product_id, quantity, now, now),
                )
                item = await self._get_cart_item(conn, user_id, product_id)
        return item

    async def set_cart_quantity(
        self, user_id: str, product_id: str, quantity: int
    ) -> Optional[CartItem]:
        now = encode_value("updated_at", utc_now())
        async with self._connect() as conn:
            with _translate_errors("update cart"):
                cur = await conn.execute(
                    """
                    UPDATE cart_items SET quantity = ?, updated_at = ?
                    WHERE user_id = ? AND product_id = ?;
                    """,
                    (quantity, now, user_id, product_id),
                )
                if cur.rowcount == 0:
                    return None
                item = await self._get_cart_item(conn, user_id, product_id)
        return item

    async def remove_from_cart(self, user_id: str, product_id: str) -> bool:
        async with self._connect() as conn:
            with _translate_errors("remove from cart"):
                cur = await conn.execute(
                    "DELETE FROM cart_items WHERE user_id = ? AND product_id = ?;",
                    (user_id, product_id),
                )
        return cur.rowcount > 0

    async def clear_cart(self, user_id: str) -> int:
        async with self._connect() as conn:
            with _translate_errors("clear cart"):
                cur = await conn.execute(
                    "DELETE FROM cart_items WHERE user_id = ?;", (user_id,)
                )
        return cur.rowcount

    # ---------------------------
    # Orders
    # ---------------------------

    async def get_order(self, order_id: str) -> Optional[Order]:
        async with self._connect() as conn:
            with _translate_errors("get order"):
                row = await _fetchone(
                    conn, "SELECT * FROM orders WHERE id = ?;", (order_id,)
                )
        return from_row(Order, row) if row else None

    async def get_order_items(self, order_id: str) -> List[OrderItem]:
        async with self._connect() as conn:
            with _translate_errors("get order items"):
                rows = await _fetchall(
                    conn,
                    _ORDER_ITEM_SELECT + " WHERE oi.order_id = ? ORDER BY oi.rowid;",
                    (order_id,),
                )
        return [from_row(OrderItem, row) for row in rows]

    async def get_order_item(self, item_id: str) -> Optional[OrderItem]:
        async with self._connect() as conn:
            with _translate_errors("get order item"):
                row = await _fetchone(
                    conn, _ORDER_ITEM_SELECT + " WHERE oi.id = ?;", (item_id,)
                )
        return from_row(OrderItem, row) if row else None

    async def list_orders(
        self, customer_id: str, limit: Optional[int] = None, offset: Optional[int] = None
    ) -> List[Order]:
        async with self._connect() as conn:
            with _translate_errors("list orders"):
                rows = await _fetchall(
                    conn,
                    """
                    SELECT o.*,
                           COUNT(oi.id) AS item_count,
                           json_group_array(p.name) AS product_names
                    FROM orders o
                    LEFT JOIN order_items oi ON o.id = oi.order_id
                    LEFT JOIN products p ON oi.product_id = p.id
                    WHERE o.customer_id = ?
                    GROUP BY o.id
                    ORDER BY o.created_at DESC, o.rowid DESC
                    LIMIT ? OFFSET ?;
                    """,
                    (customer_id, -1 if limit is None else limit, offset or 0),
                )
        return [from_row(Order, row) for row in rows]

    async def list_artisan_order_items(self, artisan_id: str) -> List[OrderItem]:
        async with self._connect() as conn:
            with _translate_errors("list artisan orders"):
                rows = await _fetchall(
                    conn,
                    """
                    SELECT oi.*,
                           p.name AS product_name,
                           p.images AS product_images,
                           o.order_number
                    FROM order_items oi
                    JOIN orders o ON oi.order_id = o.id
                    JOIN products p ON oi.product_id = p.id
                    WHERE oi.artisan_id = ?
                    ORDER BY o.created_at DESC, oi.rowid;
                    """,
                    (artisan_id,),
                )
        return [from_row(OrderItem, row) for row in rows]

    @asynccontextmanager
    async def transaction(self):
        """
        Run a block of statements atomically.

        ``BEGIN IMMEDIATE`` takes the write lock up front so two concurrent
        orders serialize instead of both reading stale stock.
        """
        async with self._connect() as conn:
            with _translate_errors("begin transaction"):
                await conn.execute("BEGIN IMMEDIATE;")
            try:
                yield SqliteOrderTransaction(conn)
            except BaseException:
                await self._rollback(conn)
                raise
            try:
                with _translate_errors("commit"):
                    await conn.execute("COMMIT;")
            except TransactionError:
                await self._rollback(conn)
                raise

    @staticmethod
    async def _rollback(conn: aiosqlite.Connection) -> None:
        try:
            await conn.execute("ROLLBACK;")
        except sqlite3.Error as exc:
            # the caller's exception is the one worth surfacing
            _logger.error(f"Rollback failed: {exc}")
        else:
            _logger.warning("Transaction rolled back.")
