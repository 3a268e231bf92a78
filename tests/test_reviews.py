import unittest

from support import ADDRESS, StoreTestCase, order_payload

from db.errors import NotFoundError, ValidationError
from services import orders, reviews


class ReviewTestCase(StoreTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.artisan = await self.make_artisan()
        self.vase = await self.make_product(self.artisan)
        self.customer_id = await self.make_user("Meera", "Rao")

    async def test_review_carries_reviewer_name(self):
        review = await reviews.create_review(
            self.store,
            self.customer_id,
            self.vase.id,
            4,
            title="Lovely glaze",
            comment="Arrived well packed.",
            images=["https://img.example.com/review-1.jpg"],
        )
        self.assertEqual(review.rating, 4)
        self.assertEqual(review.customer_name, "Meera Rao")
        self.assertEqual(review.images, ["https://img.example.com/review-1.jpg"])
        self.assertFalse(review.is_verified_purchase)
        self.assertIsNone(review.order_item_id)

    async def test_linked_order_item_marks_verified_purchase(self):
        items, totals = order_payload([(self.vase, 1)])
        order = await orders.place_order(self.store, self.customer_id, items, totals, ADDRESS)
        detail = await orders.get_order(self.store, order.id)

        review = await reviews.create_review(
            self.store, self.customer_id, self.vase.id, 5, order_item_id=detail.items[0].id
        )
        self.assertTrue(review.is_verified_purchase)
        self.assertEqual(review.order_item_id, detail.items[0].id)

    async def test_order_item_must_belong_to_reviewer_and_product(self):
        items, totals = order_payload([(self.vase, 1)])
        order = await orders.place_order(self.store, self.customer_id, items, totals, ADDRESS)
        item_id = (await orders.get_order(self.store, order.id)).items[0].id

        stranger = await self.make_user("Arjun", "Mehta")
        with self.assertRaises(ValidationError):
            await reviews.create_review(self.store, stranger, self.vase.id, 5, order_item_id=item_id)

        bowl = await self.make_product(self.artisan, "Glazed Bowl")
        with self.assertRaises(ValidationError):
            await reviews.create_review(
                self.store, self.customer_id, bowl.id, 5, order_item_id=item_id
            )
        with self.assertRaises(NotFoundError):
            await reviews.create_review(
                self.store, self.customer_id, self.vase.id, 5, order_item_id="missing"
            )
        self.assertEqual(await self.count_rows("reviews"), 0)

    async def test_invalid_reviews(self):
        for rating in (0, 6, 4.5, True, "5"):
            with self.subTest(rating=rating):
                with self.assertRaises(ValidationError) as ctx:
                    await reviews.create_review(self.store, self.customer_id, self.vase.id, rating)
                self.assertEqual(ctx.exception.errors[0]["field"], "rating")
        with self.assertRaises(ValidationError):
            await reviews.create_review(
                self.store, self.customer_id, self.vase.id, 3, images="not-a-list"
            )
        with self.assertRaises(NotFoundError):
            await reviews.create_review(self.store, self.customer_id, "missing", 3)
        no_profile = await self.make_user(with_profile=False)
        with self.assertRaises(NotFoundError):
            await reviews.create_review(self.store, no_profile, self.vase.id, 3)

    async def test_list_newest_first_with_paging(self):
        first = await self.make_user("Asha", "Iyer")
        second = await self.make_user("Kabir", "Singh")
        await reviews.create_review(self.store, first, self.vase.id, 3, comment="Good")
        await reviews.create_review(self.store, second, self.vase.id, 5, comment="Superb")

        listed = await reviews.list_product_reviews(self.store, self.vase.id)
        self.assertEqual([r.customer_name for r in listed], ["Kabir Singh", "Asha Iyer"])

        page = await reviews.list_product_reviews(self.store, self.vase.id, limit=1, offset=1)
        self.assertEqual([r.comment for r in page], ["Good"])

        other = await self.make_product(self.artisan, "Glazed Bowl")
        self.assertEqual(await reviews.list_product_reviews(self.store, other.id), [])
        with self.assertRaises(ValidationError):
            await reviews.list_product_reviews(self.store, self.vase.id, limit=-1)

    async def test_reviews_go_with_the_product(self):
        await reviews.create_review(self.store, self.customer_id, self.vase.id, 4)
        await self.store.delete_product(self.vase.id)
        self.assertEqual(await self.count_rows("reviews"), 0)


if __name__ == "__main__":
    unittest.main()
