import os
import tempfile
import unittest
from datetime import datetime, timezone
from decimal import Decimal
from unittest import mock

import support  # noqa: F401

import main
from db.models import Order, OrderDetail, OrderItem, Product


def _order(**overrides):
    values = dict(
        id="o1",
        order_number="KV-1718000000000-ABCDEFGHI",
        customer_id="c1",
        status="pending",
        payment_status="pending",
        subtotal=Decimal("1500.00"),
        tax_amount=Decimal("0.00"),
        shipping_cost=Decimal("50.00"),
        discount_amount=Decimal("0.00"),
        total_amount=Decimal("1550.00"),
        shipping_address={"line1": "12 Potter Lane", "city": "Jaipur", "postal_code": "302001"},
        created_at=datetime(2025, 3, 1, 10, 30, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return Order(**values)


class FormattingTestCase(unittest.TestCase):
    def test_order_list(self):
        md = main.format_order_list("c1", [_order(item_count=2)])
        self.assertIn("### Orders of customer c1", md)
        self.assertIn("| KV-1718000000000-ABCDEFGHI | 2025-03-01 10:30 | pending | 2 | 1550.00 |", md)
        self.assertEqual(main.format_order_list("c1", []), "### No orders for customer c1")

    def test_receipt(self):
        item = OrderItem(
            id="i1",
            order_id="o1",
            product_id="p1",
            artisan_id="a1",
            quantity=2,
            unit_price=Decimal("750.00"),
            total_price=Decimal("1500.00"),
            product_name="Terracotta Vase",
            artisan_shop_name="Clay & Kiln",
        )
        md = main.format_order_receipt(OrderDetail(order=_order(), items=[item]))
        self.assertIn("### Order KV-1718000000000-ABCDEFGHI", md)
        self.assertIn("Ship To: 12 Potter Lane, Jaipur, 302001", md)
        self.assertIn("| Terracotta Vase | Clay & Kiln | pending | 2 | 750.00 | 1500.00 |", md)
        self.assertIn("**Grand Total:** INR 1550.00", md)

    def test_product_list(self):
        product = Product(
            id="p1",
            artisan_id="a1",
            category_id="c1",
            name="Block Print Scarf",
            description="Hand block printed cotton",
            price=Decimal("899.50"),
            stock_quantity=4,
            is_featured=True,
            views_count=12,
            category_name="Textiles & Fabrics",
            artisan_shop_name="Loom House",
        )
        md = main.format_product_list([product])
        self.assertIn(
            "| Block Print Scarf * | Textiles & Fabrics | Loom House | 4 | 12 | 899.50 |", md
        )
        self.assertEqual(main.format_product_list([]), "### No products found")


class CommandLineTestCase(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.temp_dir.name, "cli", "kv.sqlite")
        self.env = mock.patch.dict(
            os.environ, {"KARIGAR_DB_BACKEND": "sqlite", "KARIGAR_SQLITE_PATH": self.db_path}
        )
        self.env.start()

    def tearDown(self):
        self.env.stop()
        self.temp_dir.cleanup()

    def test_init_db_creates_database(self):
        self.assertEqual(main.main(["init-db"]), 0)
        self.assertTrue(os.path.exists(self.db_path))

    def test_orders_and_missing_order(self):
        self.assertEqual(main.main(["orders", "nobody"]), 0)
        self.assertEqual(main.main(["order", "missing"]), 1)

    def test_products_and_paging_errors(self):
        self.assertEqual(main.main(["products", "--category", "pottery"]), 0)
        self.assertEqual(main.main(["products", "--search", "vase", "--limit", "5"]), 0)
        self.assertEqual(main.main(["products", "--limit", "-1"]), 1)

    def test_command_is_required(self):
        with self.assertRaises(SystemExit):
            main.build_parser().parse_args([])


if __name__ == "__main__":
    unittest.main()
