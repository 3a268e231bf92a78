import asyncio
import unittest

import asyncpg

from support import ADDRESS, StoreTestCase, order_payload

from db import postgres_store
from db.database import connect
from db.errors import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    TransactionError,
)
from db.sqlite_store import SqliteStore
from services import cart, orders


def _pg_error(cls, message, constraint=None):
    exc = cls(message)
    exc.constraint_name = constraint
    return exc


class PostgresErrorTranslationTestCase(unittest.TestCase):
    def test_unique_violation_is_conflict_with_constraint(self):
        with self.assertRaises(ConflictError) as ctx:
            with postgres_store._translate_errors("insert order"):
                raise _pg_error(
                    asyncpg.exceptions.UniqueViolationError,
                    "duplicate key value",
                    "orders_order_number_key",
                )
        self.assertEqual(ctx.exception.constraint, "orders_order_number_key")
        self.assertIsInstance(ctx.exception.__cause__, asyncpg.exceptions.UniqueViolationError)

    def test_foreign_key_violation_is_not_found(self):
        with self.assertRaises(NotFoundError):
            with postgres_store._translate_errors("insert order item"):
                raise _pg_error(
                    asyncpg.exceptions.ForeignKeyViolationError,
                    "violates foreign key",
                    "order_items_product_id_fkey",
                )

    def test_cancelled_statement_is_retryable(self):
        with self.assertRaises(TransactionError) as ctx:
            with postgres_store._translate_errors("decrement stock"):
                raise asyncpg.exceptions.QueryCanceledError("statement timeout")
        self.assertTrue(ctx.exception.retryable)

    def test_deadlock_is_retryable(self):
        with self.assertRaises(TransactionError) as ctx:
            with postgres_store._translate_errors("commit"):
                raise asyncpg.exceptions.DeadlockDetectedError("deadlock detected")
        self.assertTrue(ctx.exception.retryable)

    def test_timeout_is_retryable(self):
        with self.assertRaises(TransactionError) as ctx:
            with postgres_store._translate_errors("connect"):
                raise asyncio.TimeoutError()
        self.assertTrue(ctx.exception.retryable)
        self.assertIn("timed out", ctx.exception.message)

    def test_other_postgres_errors_are_not_retryable(self):
        with self.assertRaises(TransactionError) as ctx:
            with postgres_store._translate_errors("insert order"):
                raise asyncpg.exceptions.CheckViolationError("violates check constraint")
        self.assertFalse(ctx.exception.retryable)

    def test_domain_errors_pass_through(self):
        with self.assertRaises(InsufficientStockError):
            with postgres_store._translate_errors("decrement stock"):
                raise InsufficientStockError("p1", 2, 1)


class SqliteLockTestCase(StoreTestCase):
    async def test_locked_database_is_retryable_and_writes_nothing(self):
        artisan = await self.make_artisan()
        customer_id = await self.make_user("Meera", "Rao")
        vase = await self.make_product(artisan, stock=5)
        await cart.add_to_cart(self.store, customer_id, vase.id, 2)
        items, totals = order_payload([(vase, 2)])

        impatient = SqliteStore(self.db_path, timeout=0.2)
        async with connect(self.db_path) as holder:
            await holder.execute("BEGIN IMMEDIATE;")
            try:
                with self.assertRaises(TransactionError) as ctx:
                    await orders.place_order(impatient, customer_id, items, totals, ADDRESS)
            finally:
                await holder.execute("ROLLBACK;")

        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(await self.count_rows("orders"), 0)
        self.assertEqual(await self.count_rows("order_items"), 0)
        self.assertEqual(await self.stock_of(vase.id), 5)
        self.assertEqual(len(await cart.list_cart_items(self.store, customer_id)), 1)

        # the same request succeeds once the lock is gone
        order = await orders.place_order(impatient, customer_id, items, totals, ADDRESS)
        self.assertEqual(order.status, "pending")
        self.assertEqual(await self.stock_of(vase.id), 3)

    async def test_unique_and_foreign_key_failures_are_translated(self):
        artisan = await self.make_artisan()
        with self.assertRaises(ConflictError) as ctx:
            await self.store.insert_artisan_profile(
                {"user_id": artisan.user_id, "shop_name": "Duplicate"}
            )
        self.assertEqual(ctx.exception.constraint, "artisan_profiles.user_id")

        with self.assertRaises(NotFoundError):
            await self.store.insert_product(
                {
                    "artisan_id": "no-such-artisan",
                    "category_id": self.categories[0].id,
                    "name": "Orphan",
                    "description": "No shop",
                    "price": "1.00",
                    "stock_quantity": 1,
                }
            )


if __name__ == "__main__":
    unittest.main()
