import unittest
from decimal import Decimal

from support import ADDRESS, StoreTestCase, order_payload

from db.errors import ConflictError, NotFoundError, ValidationError
from services import catalog, orders


class BrowseProductsTestCase(StoreTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.potter = await self.make_artisan("Clay & Kiln")
        self.weaver = await self.make_artisan("Loom House")
        self.vase = await self.make_product(self.potter, "Terracotta Vase")
        self.bowl = await self.make_product(self.potter, "Glazed Bowl", is_active=False)
        self.scarf = await self.store.insert_product(
            {
                "artisan_id": self.weaver.id,
                "category_id": self.categories[1].id,
                "name": "Block Print Scarf",
                "description": "Hand block printed cotton",
                "price": Decimal("899.50"),
                "stock_quantity": 4,
                "tags": ["cotton", "indigo"],
                "is_featured": True,
            }
        )

    async def test_newest_first_with_joined_names(self):
        products = await catalog.list_products(self.store)
        self.assertEqual(
            [p.name for p in products], ["Block Print Scarf", "Glazed Bowl", "Terracotta Vase"]
        )
        scarf = products[0]
        self.assertEqual(scarf.category_slug, "textiles")
        self.assertEqual(scarf.category_name, "Textiles & Fabrics")
        self.assertEqual(scarf.artisan_shop_name, "Loom House")

    async def test_filters(self):
        by_category = await catalog.list_products(self.store, category="pottery")
        self.assertEqual({p.id for p in by_category}, {self.vase.id, self.bowl.id})

        by_shop = await catalog.list_products(self.store, artisan_id=self.weaver.id)
        self.assertEqual([p.id for p in by_shop], [self.scarf.id])

        featured = await catalog.list_products(self.store, is_featured=True)
        self.assertEqual([p.id for p in featured], [self.scarf.id])

        inactive = await catalog.list_products(self.store, is_active=False)
        self.assertEqual([p.id for p in inactive], [self.bowl.id])

        active_pottery = await catalog.list_products(
            self.store, category="pottery", is_active=True
        )
        self.assertEqual([p.id for p in active_pottery], [self.vase.id])

    async def test_search_matches_text_and_tags(self):
        by_name = await catalog.list_products(self.store, search="vase")
        self.assertEqual([p.id for p in by_name], [self.vase.id])

        by_description = await catalog.list_products(self.store, search="block printed")
        self.assertEqual([p.id for p in by_description], [self.scarf.id])

        by_tag = await catalog.list_products(self.store, search="indigo")
        self.assertEqual([p.id for p in by_tag], [self.scarf.id])

        self.assertEqual(await catalog.list_products(self.store, search="brass"), [])

    async def test_paging(self):
        page = await catalog.list_products(self.store, limit=2)
        self.assertEqual(len(page), 2)
        rest = await catalog.list_products(self.store, limit=2, offset=2)
        self.assertEqual([p.id for p in rest], [self.vase.id])
        with self.assertRaises(ValidationError):
            await catalog.list_products(self.store, limit=-1)
        with self.assertRaises(ValidationError):
            await catalog.list_products(self.store, offset=-5)

    async def test_category_by_slug(self):
        category = await catalog.get_category_by_slug(self.store, "jewelry")
        self.assertEqual(category.name, "Jewelry & Accessories")
        with self.assertRaises(NotFoundError):
            await catalog.get_category_by_slug(self.store, "spaceships")

    async def test_record_product_view(self):
        self.assertEqual(await catalog.record_product_view(self.store, self.vase.id), 1)
        self.assertEqual(await catalog.record_product_view(self.store, self.vase.id), 2)
        product = await catalog.get_product(self.store, self.vase.id)
        self.assertEqual(product.views_count, 2)
        with self.assertRaises(NotFoundError):
            await catalog.record_product_view(self.store, "missing")


class ManageProductsTestCase(StoreTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.artisan = await self.make_artisan()
        self.product = await self.make_product(self.artisan)

    async def test_update_own_product(self):
        updated = await catalog.update_product(
            self.store,
            self.artisan.user_id,
            self.product.id,
            {"price": 820.456, "is_featured": True, "tags": ["clay"], "views_count": 999},
        )
        self.assertEqual(updated.price, Decimal("820.46"))
        self.assertTrue(updated.is_featured)
        self.assertEqual(updated.tags, ["clay"])
        self.assertEqual(updated.views_count, 0)
        self.assertEqual(updated.name, self.product.name)

    async def test_update_validation(self):
        with self.assertRaises(ValidationError) as ctx:
            await catalog.update_product(
                self.store,
                self.artisan.user_id,
                self.product.id,
                {"name": " ", "stock_quantity": -2},
            )
        fields = {e["field"] for e in ctx.exception.errors}
        self.assertEqual(fields, {"name", "stock_quantity"})
        unchanged = await catalog.get_product(self.store, self.product.id)
        self.assertEqual(unchanged.name, self.product.name)

    async def test_other_shops_cannot_touch_product(self):
        rival = await self.make_artisan("Rival Crafts")
        with self.assertRaises(NotFoundError):
            await catalog.update_product(
                self.store, rival.user_id, self.product.id, {"price": "1.00"}
            )
        with self.assertRaises(NotFoundError):
            await catalog.delete_product(self.store, rival.user_id, self.product.id)
        self.assertEqual(await self.count_rows("products"), 1)

    async def test_delete_product(self):
        customer_id = await self.make_user()
        await self.store.add_to_cart(customer_id, self.product.id, 1)
        await catalog.delete_product(self.store, self.artisan.user_id, self.product.id)
        with self.assertRaises(NotFoundError):
            await catalog.get_product(self.store, self.product.id)
        # cart rows go with the product
        self.assertEqual(await self.count_rows("cart_items"), 0)
        with self.assertRaises(NotFoundError):
            await catalog.delete_product(self.store, self.artisan.user_id, self.product.id)

    async def test_ordered_product_cannot_be_deleted(self):
        customer_id = await self.make_user()
        items, totals = order_payload([(self.product, 1)])
        await orders.place_order(self.store, customer_id, items, totals, ADDRESS)

        with self.assertRaises(ConflictError):
            await catalog.delete_product(self.store, self.artisan.user_id, self.product.id)
        self.assertEqual(await self.count_rows("products"), 1)

        hidden = await catalog.update_product(
            self.store, self.artisan.user_id, self.product.id, {"is_active": False}
        )
        self.assertFalse(hidden.is_active)


if __name__ == "__main__":
    unittest.main()
