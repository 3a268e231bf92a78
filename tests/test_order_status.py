import unittest

import support  # noqa: F401

from db.errors import ValidationError
from services.order_status import (
    ORDER_STATUSES,
    can_transition,
    check_transition,
    is_terminal,
    rollup_status,
)


class OrderStatusTestCase(unittest.TestCase):
    def test_allowed_transitions(self):
        allowed = {
            ("pending", "processing"),
            ("pending", "shipped"),
            ("pending", "cancelled"),
            ("processing", "shipped"),
            ("processing", "cancelled"),
            ("shipped", "delivered"),
        }
        for current in ORDER_STATUSES:
            for new in ORDER_STATUSES:
                with self.subTest(current=current, new=new):
                    self.assertEqual(can_transition(current, new), (current, new) in allowed)

    def test_terminal_states(self):
        self.assertTrue(is_terminal("delivered"))
        self.assertTrue(is_terminal("cancelled"))
        self.assertFalse(is_terminal("shipped"))
        with self.assertRaises(ValidationError) as ctx:
            check_transition("cancelled", "pending")
        self.assertIn("is final", ctx.exception.message)
        with self.assertRaises(ValidationError) as ctx:
            check_transition("delivered", "shipped")
        self.assertIn("is final", ctx.exception.message)

    def test_check_transition(self):
        check_transition("pending", "processing")
        with self.assertRaises(ValidationError):
            check_transition("shipped", "cancelled")
        with self.assertRaises(ValidationError):
            check_transition("pending", "returned")

    def test_rollup(self):
        self.assertIsNone(rollup_status([]))
        self.assertEqual(rollup_status(["pending", "pending"]), "pending")
        self.assertEqual(rollup_status(["processing", "pending"]), "processing")
        self.assertEqual(rollup_status(["shipped", "pending"]), "processing")
        self.assertEqual(rollup_status(["shipped", "delivered"]), "shipped")
        self.assertEqual(rollup_status(["delivered", "cancelled"]), "delivered")
        self.assertEqual(rollup_status(["cancelled", "cancelled"]), "cancelled")


if __name__ == "__main__":
    unittest.main()
