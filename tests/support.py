import os
import sys
import tempfile
import unittest
from decimal import Decimal
from typing import List, Sequence, Tuple

# Ensure project src/ is on sys.path for imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
src_path = os.path.join(ROOT, "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from db.database import connect  # noqa: E402
from db.models import ArtisanProfile, Product  # noqa: E402
from db.sqlite_store import SqliteStore  # noqa: E402
from services import profiles  # noqa: E402
from utils.config import Settings  # noqa: E402
from utils.pure import new_id, to_money, utc_now  # noqa: E402

ADDRESS = {
    "full_name": "Meera Rao",
    "line1": "12 Potter Lane",
    "city": "Jaipur",
    "state": "Rajasthan",
    "postal_code": "302001",
    "country": "IN",
}


def order_payload(
    lines: Sequence[Tuple[Product, int]],
    tax_amount: str = "0.00",
    shipping_cost: str = "0.00",
    discount_amount: str = "0.00",
) -> Tuple[List[dict], dict]:
    """Build (items, totals) for place_order with totals that add up."""
    items = [
        {
            "product_id": product.id,
            "artisan_id": product.artisan_id,
            "quantity": qty,
            "unit_price": str(product.price),
        }
        for product, qty in lines
    ]
    subtotal = sum((product.price * qty for product, qty in lines), Decimal("0.00"))
    total = subtotal + Decimal(tax_amount) + Decimal(shipping_cost) - Decimal(discount_amount)
    totals = {
        "subtotal": str(subtotal),
        "tax_amount": tax_amount,
        "shipping_cost": shipping_cost,
        "discount_amount": discount_amount,
        "total_amount": str(total),
    }
    return items, totals


class StoreTestCase(unittest.IsolatedAsyncioTestCase):
    """Each test gets a fresh sqlite file with the schema and seed categories."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.temp_dir.name, "test.sqlite")

    async def asyncSetUp(self):
        self.store = await SqliteStore.create(Settings(sqlite_path=self.db_path))
        self.categories = await self.store.list_categories()

    async def asyncTearDown(self):
        await self.store.close()

    def tearDown(self):
        self.temp_dir.cleanup()

    async def make_user(self, first_name="Meera", last_name="Rao", with_profile=True) -> str:
        user_id = new_id()
        email = f"{user_id[:8]}@example.com"
        now = utc_now().isoformat()
        async with connect(self.db_path) as conn:
            await conn.execute(
                """
                INSERT INTO users(id, email, password_hash, email_verified,
                                  created_at, updated_at)
                VALUES (?, ?, ?, 1, ?, ?);
                """,
                (user_id, email, "hashed", now, now),
            )
        if with_profile:
            await self.store.insert_profile(
                {
                    "id": user_id,
                    "first_name": first_name,
                    "last_name": last_name,
                    "full_name": f"{first_name} {last_name}",
                    "email": email,
                }
            )
        return user_id

    async def make_artisan(self, shop_name="Clay & Kiln") -> ArtisanProfile:
        user_id = await self.make_user("Priya", "Sharma")
        return await profiles.reconcile_artisan_profile(
            self.store, user_id, {"shop_name": shop_name, "location": "Jaipur"}
        )

    async def make_product(
        self,
        artisan: ArtisanProfile,
        name="Terracotta Vase",
        price="750.00",
        stock=5,
        is_active=True,
    ) -> Product:
        return await self.store.insert_product(
            {
                "artisan_id": artisan.id,
                "category_id": self.categories[0].id,
                "name": name,
                "description": f"Handmade {name.lower()}",
                "price": to_money(price),
                "stock_quantity": stock,
                "images": [f"https://img.example.com/{name.lower().replace(' ', '-')}.jpg"],
                "is_active": is_active,
            }
        )

    async def stock_of(self, product_id: str) -> int:
        product = await self.store.get_product(product_id)
        return product.stock_quantity

    async def count_rows(self, table: str) -> int:
        async with connect(self.db_path) as conn:
            cur = await conn.execute(f"SELECT COUNT(*) FROM {table};")
            row = await cur.fetchone()
            await cur.close()
        return row[0]
