import argparse
import asyncio
import sys
from typing import List, Optional, Sequence

from rich.console import Console
from rich.markdown import Markdown

from db.errors import KarigarError
from db.models import Order, OrderDetail, Product
from db.store import open_store
from services import catalog
from services import orders as order_service
from utils.config import Settings, load_settings
from utils.logger import get_logger
from utils.pure import generate_markdown_table

_logger = get_logger("main")


def _address_line(address: Optional[dict]) -> str:
    if not address:
        return "-"
    parts = [
        address.get(key)
        for key in ("line1", "line2", "city", "state", "postal_code", "country")
    ]
    return ", ".join(str(p) for p in parts if p)


def _date(order: Order) -> str:
    return order.created_at.strftime("%Y-%m-%d %H:%M") if order.created_at else "-"


def format_order_list(customer_id: str, orders: List[Order]) -> str:
    if not orders:
        return f"### No orders for customer {customer_id}"
    headers = ["Order No", "Date", "Status", "Items", "Total (INR)"]
    rows = [
        [
            order.order_number,
            _date(order),
            order.status,
            order.item_count if order.item_count is not None else "-",
            f"{order.total_amount:.2f}",
        ]
        for order in orders
    ]
    md = f"### Orders of customer {customer_id}\n\n"
    return md + generate_markdown_table(headers, rows, ["l", "c", "c", "r", "r"])


def format_order_receipt(detail: OrderDetail) -> str:
    order = detail.order
    header = (
        f"### Order {order.order_number}\n"
        f"Date: {_date(order)}  \n"
        f"Status: {order.status} / payment {order.payment_status}  \n"
        f"Ship To: {_address_line(order.shipping_address)}\n\n"
    )
    headers = ["Product", "Shop", "Status", "Qty", "Unit Price", "Line Total"]
    rows = [
        [
            item.product_name or item.product_id,
            item.artisan_shop_name or "-",
            item.status,
            item.quantity,
            f"{item.unit_price:.2f}",
            f"{item.total_price:.2f}",
        ]
        for item in detail.items
    ]
    table = generate_markdown_table(headers, rows, ["l", "l", "c", "r", "r", "r"])
    footer = (
        f"\n\nSubtotal: {order.subtotal:.2f}  \n"
        f"Tax: {order.tax_amount:.2f}  \n"
        f"Shipping: {order.shipping_cost:.2f}  \n"
        f"Discount: -{order.discount_amount:.2f}  \n"
        f"**Grand Total:** {order.currency} {order.total_amount:.2f}"
    )
    return header + table + footer


def format_product_list(products: List[Product]) -> str:
    if not products:
        return "### No products found"
    headers = ["Product", "Category", "Shop", "Stock", "Views", "Price (INR)"]
    rows = [
        [
            product.name + (" *" if product.is_featured else ""),
            product.category_name or "-",
            product.artisan_shop_name or "-",
            product.stock_quantity,
            product.views_count,
            f"{product.price:.2f}",
        ]
        for product in products
    ]
    md = "### Products\n\n"
    return md + generate_markdown_table(headers, rows, ["l", "l", "l", "r", "r", "r"])


async def init_db(settings: Settings) -> None:
    store = await open_store(settings)
    try:
        if settings.backend == "postgres":
            await store.apply_schema()
        _logger.info(f"Database ready ({settings.backend}).")
    finally:
        await store.close()


async def show_orders(settings: Settings, customer_id: str, limit: Optional[int]) -> str:
    store = await open_store(settings)
    try:
        orders = await order_service.list_orders(store, customer_id, limit=limit)
    finally:
        await store.close()
    return format_order_list(customer_id, orders)


async def show_order(settings: Settings, order_id: str) -> str:
    store = await open_store(settings)
    try:
        detail = await order_service.get_order(store, order_id)
    finally:
        await store.close()
    return format_order_receipt(detail)


async def show_products(
    settings: Settings,
    category: Optional[str],
    search: Optional[str],
    limit: Optional[int],
) -> str:
    store = await open_store(settings)
    try:
        products = await catalog.list_products(
            store, category=category, search=search, is_active=True, limit=limit
        )
    finally:
        await store.close()
    return format_product_list(products)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="karigarverse", description="Karigarverse marketplace admin tasks"
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="create the schema and seed categories")
    p_orders = sub.add_parser("orders", help="list a customer's orders")
    p_orders.add_argument("customer_id")
    p_orders.add_argument("--limit", type=int, default=None)
    p_order = sub.add_parser("order", help="print one order receipt")
    p_order.add_argument("order_id")
    p_products = sub.add_parser("products", help="browse active products")
    p_products.add_argument("--category", help="category slug")
    p_products.add_argument("--search")
    p_products.add_argument("--limit", type=int, default=None)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    console = Console()
    try:
        if args.command == "init-db":
            asyncio.run(init_db(settings))
        elif args.command == "orders":
            md = asyncio.run(show_orders(settings, args.customer_id, args.limit))
            console.print(Markdown(md))
        elif args.command == "order":
            md = asyncio.run(show_order(settings, args.order_id))
            console.print(Markdown(md))
        elif args.command == "products":
            md = asyncio.run(
                show_products(settings, args.category, args.search, args.limit)
            )
            console.print(Markdown(md))
    except KarigarError as exc:
        _logger.error(exc.message)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
