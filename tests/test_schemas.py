import unittest
from decimal import Decimal

import support  # noqa: F401

from db.errors import ValidationError
from services.schemas import parse_order_request

ADDRESS = {"line1": "4 Weaver Street", "city": "Varanasi", "postal_code": "221001"}
ITEM = {"product_id": "p1", "artisan_id": "a1", "quantity": 2, "unit_price": "450.00"}


class OrderRequestTestCase(unittest.TestCase):
    def test_valid_request(self):
        request = parse_order_request(
            "c1",
            [ITEM],
            {"subtotal": "900.00", "shipping_cost": "40.00", "total_amount": "940.00"},
            ADDRESS,
            billing_address=dict(ADDRESS, gst_number="09ABCDE1234F1Z5"),
            payment_method="cod",
        )
        self.assertEqual(request.items[0].total_price, Decimal("900.00"))
        self.assertEqual(request.totals.tax_amount, Decimal("0"))
        self.assertEqual(request.shipping_address.country, "IN")
        # unknown address keys are kept
        self.assertEqual(
            request.billing_address.model_dump()["gst_number"], "09ABCDE1234F1Z5"
        )

    def test_errors_are_collected_per_field(self):
        with self.assertRaises(ValidationError) as ctx:
            parse_order_request(
                "",
                [dict(ITEM, quantity=0, unit_price="-0.50")],
                {"subtotal": "900.00", "total_amount": "900.00"},
                {"city": "Varanasi"},
            )
        fields = {e["field"] for e in ctx.exception.errors}
        self.assertIn("customer_id", fields)
        self.assertIn("items.0.quantity", fields)
        self.assertIn("items.0.unit_price", fields)
        self.assertIn("shipping_address.line1", fields)
        self.assertIn("shipping_address.postal_code", fields)
        self.assertEqual(ctx.exception.status_code, 400)

    def test_totals_invariant(self):
        with self.assertRaises(ValidationError) as ctx:
            parse_order_request(
                "c1",
                [ITEM],
                {
                    "subtotal": "900.00",
                    "tax_amount": "18.00",
                    "shipping_cost": "40.00",
                    "discount_amount": "100.00",
                    "total_amount": "900.00",
                },
                ADDRESS,
            )
        self.assertIn("858.00", ctx.exception.message)

    def test_float_sums_are_rounded_to_cents(self):
        request = parse_order_request(
            "c1",
            [dict(ITEM, quantity=1, unit_price=0.1 + 0.2)],
            {"subtotal": 0.1 + 0.2, "total_amount": 0.1 + 0.2},
            ADDRESS,
        )
        self.assertEqual(request.items[0].unit_price, Decimal("0.30"))
        self.assertEqual(request.totals.subtotal, Decimal("0.30"))
        self.assertEqual(request.totals.total_amount, Decimal("0.30"))

        request = parse_order_request(
            "c1",
            [dict(ITEM, quantity=3, unit_price=19.99)],
            {"subtotal": 19.99 * 3, "tax_amount": 59.97 * 0.18, "total_amount": 70.7646},
            ADDRESS,
        )
        self.assertEqual(request.totals.subtotal, Decimal("59.97"))
        self.assertEqual(request.totals.tax_amount, Decimal("10.79"))
        self.assertEqual(request.totals.total_amount, Decimal("70.76"))
        self.assertEqual(request.items[0].total_price, Decimal("59.97"))

    def test_unparseable_money_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            parse_order_request(
                "c1", [ITEM], {"subtotal": "lots", "total_amount": "900.00"}, ADDRESS
            )
        self.assertEqual(ctx.exception.errors[0]["field"], "totals.subtotal")

    def test_negative_and_missing_items(self):
        totals = {"subtotal": "0.00", "total_amount": "0.00"}
        with self.assertRaises(ValidationError):
            parse_order_request("c1", [], totals, ADDRESS)
        with self.assertRaises(ValidationError):
            parse_order_request("c1", None, totals, ADDRESS)
        with self.assertRaises(ValidationError):
            parse_order_request(
                "c1", [ITEM], {"subtotal": "-1.00", "total_amount": "-1.00"}, ADDRESS
            )


if __name__ == "__main__":
    unittest.main()
