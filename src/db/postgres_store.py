# asyncpg implementation of db.store.Store, for a local PostgreSQL or a Supabase database
from __future__ import annotations

import asyncio
import json
import uuid
from contextlib import asynccontextmanager, contextmanager
from typing import Any, Dict, List, Mapping, Optional, Tuple

import asyncpg

from db.database import POSTGRES_SCHEMA, SEED_CATEGORIES
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

_RETRYABLE = (
    asyncpg.exceptions.QueryCanceledError,
    asyncpg.exceptions.DeadlockDetectedError,
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.TooManyConnectionsError,
)

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
    """Re-raise asyncpg and network errors as the core error taxonomy."""
    try:
        yield
    except asyncpg.exceptions.UniqueViolationError as exc:
        raise ConflictError(
            f"{action}: duplicate value violates {exc.constraint_name}",
            exc.constraint_name,
        ) from exc
    except asyncpg.exceptions.ForeignKeyViolationError as exc:
        raise NotFoundError(f"{action}: referenced record does not exist") from exc
    except _RETRYABLE as exc:
        raise TransactionError(f"{action}: {exc}", retryable=True) from exc
    except asyncpg.PostgresError as exc:
        raise TransactionError(f"{action}: {exc}") from exc
    except asyncio.TimeoutError as exc:
        raise TransactionError(f"{action}: timed out", retryable=True) from exc
    except (asyncpg.exceptions.InterfaceError, OSError) as exc:
        raise TransactionError(f"{action}: {exc}", retryable=True) from exc


def _record(record: Optional[asyncpg.Record]) -> Optional[Dict[str, Any]]:
    if record is None:
        return None
    return {
        key: str(value) if isinstance(value, uuid.UUID) else value
        for key, value in record.items()
    }


def _insert_sql(table: str, row: Mapping[str, Any]) -> Tuple[str, tuple]:
    values = checked_columns(table, row)
    columns = ", ".join(values)
    marks = ", ".join(f"${i}" for i in range(1, len(values) + 1))
    return (
        f"INSERT INTO {table} ({columns}) VALUES ({marks}) RETURNING *",
        tuple(values.values()),
    )


def _update_sql(
    table: str, key_column: str, key: str, fields: Mapping[str, Any]
) -> Tuple[str, tuple]:
    values = dict(checked_columns(table, fields))
    values.setdefault("updated_at", utc_now())
    assignments = ", ".join(
        f"{column} = ${i}" for i, column in enumerate(values, start=2)
    )
    return (
        f"UPDATE {table} SET {assignments} WHERE {key_column} = $1 RETURNING *",
        (key, *values.values()),
    )


def _stamped(row: Mapping[str, Any]) -> Dict[str, Any]:
    stamped = dict(row)
    now = utc_now()
    stamped.setdefault("id", new_id())
    stamped.setdefault("created_at", now)
    stamped.setdefault("updated_at", now)
    return stamped


async def _init_connection(conn: asyncpg.Connection) -> None:
    for json_type in ("json", "jsonb"):
        await conn.set_type_codec(
            json_type,
            encoder=lambda value: json.dumps(value, default=str),
            decoder=json.loads,
            schema="pg_catalog",
        )


class PostgresOrderTransaction:
    """Statements bound to one pooled connection inside a READ COMMITTED transaction."""

    def __init__(self, conn: asyncpg.Connection):
        self._conn = conn

    async def insert_order(self, row: Mapping[str, Any]) -> Order:
        sql, params = _insert_sql("orders", _stamped(row))
        with _translate_errors("insert order"):
            # savepoint, so a duplicate order_number can be retried in the same transaction
            async with self._conn.transaction():
                record = await self._conn.fetchrow(sql, *params)
        return from_row(Order, _record(record))

    async def insert_order_item(self, row: Mapping[str, Any]) -> OrderItem:
        sql, params = _insert_sql("order_items", _stamped(row))
        with _translate_errors("insert order item"):
            record = await self._conn.fetchrow(sql, *params)
        return from_row(OrderItem, _record(record))

    async def decrement_stock(self, product_id: str, quantity: int) -> int:
        with _translate_errors("decrement stock"):
            remaining = await self._conn.fetchval(
                """
                UPDATE products
                SET stock_quantity = stock_quantity - $2, updated_at = NOW()
                WHERE id = $1 AND stock_quantity >= $2
                RETURNING stock_quantity
                """,
                product_id,
                quantity,
            )
            if remaining is not None:
                return remaining
            available = await self._conn.fetchval(
                "SELECT stock_quantity FROM products WHERE id = $1", product_id
            )
        if available is None:
            raise NotFoundError(f"Product {product_id} not found")
        raise InsufficientStockError(product_id, quantity, available)

    async def restock(self, product_id: str, quantity: int) -> int:
        with _translate_errors("restock"):
            remaining = await self._conn.fetchval(
                """
                UPDATE products
                SET stock_quantity = stock_quantity + $2, updated_at = NOW()
                WHERE id = $1
                RETURNING stock_quantity
                """,
                product_id,
                quantity,
            )
        if remaining is None:
            raise NotFoundError(f"Product {product_id} not found")
        return remaining

    async def clear_cart(self, user_id: str) -> int:
        with _translate_errors("clear cart"):
            status = await self._conn.execute(
                "DELETE FROM cart_items WHERE user_id = $1", user_id
            )
        return int(status.split()[-1])

    async def get_order_for_update(self, order_id: str) -> Optional[Order]:
        with _translate_errors("get order"):
            record = await self._conn.fetchrow(
                "SELECT * FROM orders WHERE id = $1 FOR UPDATE", order_id
            )
        return from_row(Order, _record(record)) if record else None

    async def get_order_items(self, order_id: str) -> List[OrderItem]:
        with _translate_errors("get order items"):
            records = await self._conn.fetch(
                """
                SELECT * FROM order_items WHERE order_id = $1
                ORDER BY created_at, id
                FOR UPDATE
                """,
                order_id,
            )
        return [from_row(OrderItem, _record(r)) for r in records]

    async def get_order_item_for_update(self, item_id: str) -> Optional[OrderItem]:
        with _translate_errors("get order item"):
            record = await self._conn.fetchrow(
                "SELECT * FROM order_items WHERE id = $1 FOR UPDATE", item_id
            )
        return from_row(OrderItem, _record(record)) if record else None

    async def set_order_status(
        self, order_id: str, status: str, tracking_number: Optional[str] = None
    ) -> Order:
        fields: Dict[str, Any] = {"status": status}
        if tracking_number is not None:
            fields["tracking_number"] = tracking_number
        sql, params = _update_sql("orders", "id", order_id, fields)
        with _translate_errors("update order status"):
            record = await self._conn.fetchrow(sql, *params)
        if record is None:
            raise NotFoundError(f"Order {order_id} not found")
        return from_row(Order, _record(record))

    async def set_order_item_status(
        self, item_id: str, fields: Mapping[str, Any]
    ) -> OrderItem:
        sql, params = _update_sql("order_items", "id", item_id, fields)
        with _translate_errors("update order item"):
            record = await self._conn.fetchrow(sql, *params)
        if record is None:
            raise NotFoundError(f"Order item {item_id} not found")
        return from_row(OrderItem, _record(record))


class PostgresStore:
    """Store backed by an asyncpg connection pool."""

    def __init__(self, pool: asyncpg.Pool, acquire_timeout: float):
        self._pool = pool
        self._acquire_timeout = acquire_timeout

    @classmethod
    async def create(cls, settings: Settings) -> "PostgresStore":
        _logger.info(
            f"Connecting to PostgreSQL {settings.pg_host}:{settings.pg_port}/{settings.pg_database}..."
        )
        with _translate_errors("connect"):
            pool = await asyncpg.create_pool(
                host=settings.pg_host,
                port=settings.pg_port,
                user=settings.pg_user,
                password=settings.pg_password,
                database=settings.pg_database,
                min_size=settings.pg_pool_min,
                max_size=settings.pg_pool_max,
                timeout=settings.pg_connect_timeout,
                command_timeout=settings.pg_statement_timeout,
                max_inactive_connection_lifetime=settings.pg_idle_timeout,
                init=_init_connection,
            )
        return cls(pool, settings.pg_connect_timeout)

    async def close(self) -> None:
        await self._pool.close()

    @asynccontextmanager
    async def _acquire(self, action: str):
        with _translate_errors(action):
            conn = await self._pool.acquire(timeout=self._acquire_timeout)
        try:
            yield conn
        finally:
            await self._pool.release(conn)

    async def _fetchrow(self, action: str, sql: str, *params) -> Optional[Dict[str, Any]]:
        async with self._acquire(action) as conn:
            with _translate_errors(action):
                return _record(await conn.fetchrow(sql, *params))

    async def _fetch(self, action: str, sql: str, *params) -> List[Dict[str, Any]]:
        async with self._acquire(action) as conn:
            with _translate_errors(action):
                return [_record(r) for r in await conn.fetch(sql, *params)]

    async def apply_schema(self) -> None:
        """Create tables and seed categories; safe to run repeatedly."""
        with open(POSTGRES_SCHEMA, "r") as f:
            schema_sql = f.read()
        async with self._acquire("apply schema") as conn:
            with _translate_errors("apply schema"):
                await conn.execute(schema_sql)
                await conn.executemany(
                    """
                    INSERT INTO categories (id, name, slug, description, sort_order)
                    VALUES ($1, $2, $3, $4, $5)
                    ON CONFLICT (slug) DO NOTHING
                    """,
                    [(new_id(), *category) for category in SEED_CATEGORIES],
                )
        _logger.info("PostgreSQL schema applied.")

    # profiles

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        row = await self._fetchrow(
            "get profile", "SELECT * FROM profiles WHERE id = $1", user_id
        )
        return from_row(Profile, row) if row else None

    async def insert_profile(self, row: Mapping[str, Any]) -> Profile:
        sql, params = _insert_sql("profiles", _stamped(row))
        return from_row(Profile, await self._fetchrow("insert profile", sql, *params))

    async def update_profile(
        self, user_id: str, fields: Mapping[str, Any]
    ) -> Optional[Profile]:
        sql, params = _update_sql("profiles", "id", user_id, fields)
        row = await self._fetchrow("update profile", sql, *params)
        return from_row(Profile, row) if row else None

    # artisan profiles

    async def find_artisan_profile(self, user_id: str) -> Optional[ArtisanProfile]:
        row = await self._fetchrow(
            "get artisan profile",
            "SELECT * FROM artisan_profiles WHERE user_id = $1",
            user_id,
        )
        return from_row(ArtisanProfile, row) if row else None

    async def get_artisan_profile_by_id(
        self, artisan_id: str
    ) -> Optional[ArtisanProfile]:
        row = await self._fetchrow(
            "get artisan profile",
            "SELECT * FROM artisan_profiles WHERE id = $1",
            artisan_id,
        )
        return from_row(ArtisanProfile, row) if row else None

    async def insert_artisan_profile(self, row: Mapping[str, Any]) -> ArtisanProfile:
        sql, params = _insert_sql("artisan_profiles", _stamped(row))
        return from_row(
            ArtisanProfile, await self._fetchrow("insert artisan profile", sql, *params)
        )

    async def update_artisan_profile(
        self, user_id: str, fields: Mapping[str, Any]
    ) -> Optional[ArtisanProfile]:
        sql, params = _update_sql("artisan_profiles", "user_id", user_id, fields)
        row = await self._fetchrow("update artisan profile", sql, *params)
        return from_row(ArtisanProfile, row) if row else None

    # catalogue

    async def list_categories(self, include_inactive: bool = False) -> List[Category]:
        sql = "SELECT * FROM categories"
        if not include_inactive:
            sql += " WHERE is_active"
        sql += " ORDER BY sort_order, name"
        return [from_row(Category, r) for r in await self._fetch("list categories", sql)]

    async def get_product(self, product_id: str) -> Optional[Product]:
        row = await self._fetchrow(
            "get product", "SELECT * FROM products WHERE id = $1", product_id
        )
        return from_row(Product, row) if row else None

    async def insert_product(self, row: Mapping[str, Any]) -> Product:
        sql, params = _insert_sql("products", _stamped(row))
        return from_row(Product, await self._fetchrow("insert product", sql, *params))

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

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        if category_slug:
            clauses.append(f"c.slug = {bind(category_slug)}")
        if artisan_id:
            clauses.append(f"p.artisan_id = {bind(artisan_id)}")
        if is_featured is not None:
            clauses.append(f"p.is_featured = {bind(is_featured)}")
        if is_active is not None:
            clauses.append(f"p.is_active = {bind(is_active)}")
        if search:
            pattern = bind(f"%{search}%")
            tag = bind(search)
            clauses.append(
                f"(p.name ILIKE {pattern} OR p.description ILIKE {pattern}"
                f" OR COALESCE(p.tags, '[]'::jsonb) ? {tag})"
            )
        sql = _PRODUCT_SELECT
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += f" ORDER BY p.created_at DESC LIMIT {bind(limit)} OFFSET {bind(offset or 0)}"
        rows = await self._fetch("list products", sql, *params)
        return [from_row(Product, r) for r in rows]

    async def update_product(
        self, product_id: str, fields: Mapping[str, Any]
    ) -> Optional[Product]:
        sql, params = _update_sql("products", "id", product_id, fields)
        row = await self._fetchrow("update product", sql, *params)
        return from_row(Product, row) if row else None

    async def delete_product(self, product_id: str) -> bool:
        async with self._acquire("delete product") as conn:
            with _translate_errors("delete product"):
                try:
                    status = await conn.execute(
                        "DELETE FROM products WHERE id = $1", product_id
                    )
                except asyncpg.exceptions.ForeignKeyViolationError as exc:
                    raise ConflictError(
                        f"delete product: product {product_id} has been ordered",
                        exc.constraint_name,
                    ) from exc
        return int(status.split()[-1]) > 0

    async def increment_product_views(self, product_id: str) -> Optional[int]:
        row = await self._fetchrow(
            "increment product views",
            """
            UPDATE products SET views_count = COALESCE(views_count, 0) + 1
            WHERE id = $1
            RETURNING views_count
            """,
            product_id,
        )
        return row["views_count"] if row else None

    async def get_category_by_slug(self, slug: str) -> Optional[Category]:
        row = await self._fetchrow(
            "get category",
            "SELECT * FROM categories WHERE slug = $1 AND is_active",
            slug,
        )
        return from_row(Category, row) if row else None

    # reviews

    async def list_product_reviews(
        self, product_id: str, limit: Optional[int] = None, offset: Optional[int] = None
    ) -> List[Review]:
        rows = await self._fetch(
            "list reviews",
            _REVIEW_SELECT
            + " WHERE r.product_id = $1 ORDER BY r.created_at DESC LIMIT $2 OFFSET $3",
            product_id,
            limit,
            offset or 0,
        )
        return [from_row(Review, r) for r in rows]

    async def insert_review(self, row: Mapping[str, Any]) -> Review:
        sql, params = _insert_sql("reviews", _stamped(row))
        inserted = await self._fetchrow("insert review", sql, *params)
        found = await self._fetchrow(
            "insert review", _REVIEW_SELECT + " WHERE r.id = $1", inserted["id"]
        )
        return from_row(Review, found)

    # cart

    async def list_cart_items(self, user_id: str) -> List[CartItem]:
        rows = await self._fetch(
            "list cart",
            _CART_SELECT + " WHERE ci.user_id = $1 ORDER BY ci.created_at DESC",
            user_id,
        )
        return [from_row(CartItem, r) for r in rows]

    async def _get_cart_item(self, user_id: str, product_id: str) -> Optional[CartItem]:
        row = await self._fetchrow(
            "get cart item",
            _CART_SELECT + " WHERE ci.user_id = $1 AND ci.product_id = $2",
            user_id,
            product_id,
        )
        return from_row(CartItem, row) if row else None

    async def add_to_cart(self, user_id: str, product_id: str, quantity: int) -> CartItem:
        async with self._acquire("add to cart") as conn:
            with _translate_errors("add to cart"):
                await conn.execute(
                    """
                    INSERT INTO cart_items (id, user_id, product_id, quantity)
                    VALUES ($1, $2, $3, $4)
                    ON CONFLICT (user_id, product_id)
                    DO UPDATE SET quantity = cart_items.quantity + EXCLUDED.quantity,
                                  updated_at = NOW()
                    """,
                    new_id(),
                    user_id,
                    product_id,
                    quantity,
                )
        return await self._get_cart_item(user_id, product_id)

    async def set_cart_quantity(
        self, user_id: str, product_id: str, quantity: int
    ) -> Optional[CartItem]:
        row = await self._fetchrow(
            "update cart",
            """
            UPDATE cart_items SET quantity = $3, updated_at = NOW()
            WHERE user_id = $1 AND product_id = $2
            RETURNING id
            """,
            user_id,
            product_id,
            quantity,
        )
        if row is None:
            return None
        return await self._get_cart_item(user_id, product_id)

    async def remove_from_cart(self, user_id: str, product_id: str) -> bool:
        row = await self._fetchrow(
            "remove from cart",
            "DELETE FROM cart_items WHERE user_id = $1 AND product_id = $2 RETURNING id",
            user_id,
            product_id,
        )
        return row is not None

    async def clear_cart(self, user_id: str) -> int:
        async with self._acquire("clear cart") as conn:
            with _translate_errors("clear cart"):
                status = await conn.execute(
                    "DELETE FROM cart_items WHERE user_id = $1", user_id
                )
        return int(status.split()[-1])

    # orders

    async def get_order(self, order_id: str) -> Optional[Order]:
        row = await self._fetchrow(
            "get order", "SELECT * FROM orders WHERE id = $1", order_id
        )
        return from_row(Order, row) if row else None

    async def get_order_items(self, order_id: str) -> List[OrderItem]:
        rows = await self._fetch(
            "get order items",
            _ORDER_ITEM_SELECT + " WHERE oi.order_id = $1 ORDER BY oi.created_at, oi.id",
            order_id,
        )
        return [from_row(OrderItem, r) for r in rows]

    async def get_order_item(self, item_id: str) -> Optional[OrderItem]:
        row = await self._fetchrow(
            "get order item", _ORDER_ITEM_SELECT + " WHERE oi.id = $1", item_id
        )
        return from_row(OrderItem, row) if row else None

    async def list_orders(
        self, customer_id: str, limit: Optional[int] = None, offset: Optional[int] = None
    ) -> List[Order]:
        rows = await self._fetch(
            "list orders",
            """
            SELECT o.*,
                   COUNT(oi.id) AS item_count,
                   COALESCE(array_agg(p.name) FILTER (WHERE p.name IS NOT NULL), '{}')
                       AS product_names
            FROM orders o
            LEFT JOIN order_items oi ON o.id = oi.order_id
            LEFT JOIN products p ON oi.product_id = p.id
            WHERE o.customer_id = $1
            GROUP BY o.id
            ORDER BY o.created_at DESC
            LIMIT $2 OFFSET $3
            """,
            customer_id,
            limit,
            offset or 0,
        )
        return [from_row(Order, r) for r in rows]

    async def list_artisan_order_items(self, artisan_id: str) -> List[OrderItem]:
        rows = await self._fetch(
            "list artisan orders",
            """
            SELECT oi.*,
                   p.name AS product_name,
                   p.images AS product_images,
                   o.order_number
            FROM order_items oi
            JOIN orders o ON oi.order_id = o.id
            JOIN products p ON oi.product_id = p.id
            WHERE oi.artisan_id = $1
            ORDER BY o.created_at DESC, oi.created_at
            """,
            artisan_id,
        )
        return [from_row(OrderItem, r) for r in rows]

    @asynccontextmanager
    async def transaction(self):
        """
        Run a block of statements atomically on one pooled connection.

        READ COMMITTED is enough: the conditional stock UPDATE takes a row lock
        and re-checks its WHERE clause after any concurrent writer commits.
        """
        async with self._acquire("begin transaction") as conn:
            tx = conn.transaction(isolation="read_committed")
            with _translate_errors("begin transaction"):
                await tx.start()
            try:
                yield PostgresOrderTransaction(conn)
            except BaseException:
                await self._rollback(tx)
                raise
            try:
                with _translate_errors("commit"):
                    await tx.commit()
            except TransactionError:
                await self._rollback(tx)
                raise

    @staticmethod
    async def _rollback(tx) -> None:
        try:
            await tx.rollback()
        except (asyncpg.PostgresError, asyncpg.exceptions.InterfaceError, OSError) as exc:
            _logger.error(f"Rollback failed: {exc}")
        else:
            _logger.warning("Transaction rolled back.")
