"""
Order placement and order lifecycle.

``place_order`` is the checkout transaction: header, line items, stock
decrements and cart clearing commit together or not at all. The remaining
functions read orders back and move them through the status machine in
``services.order_status``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

from db.errors import ConflictError, NotFoundError, TransactionError, ValidationError
from db.models import Order, OrderDetail, OrderItem
from db.store import OrderTransaction, Store
from services.order_status import (
    CANCELLABLE,
    CANCELLED,
    DELIVERED,
    PENDING,
    SHIPPED,
    can_transition,
    check_transition,
    rollup_status,
)
from services.schemas import OrderRequest, parse_order_request
from utils.logger import get_logger
from utils.pure import generate_order_number, to_money, utc_now

_logger = get_logger(__name__)

ORDER_NUMBER_ATTEMPTS = 3


async def _insert_header(tx: OrderTransaction, request: OrderRequest) -> Order:
    totals = request.totals
    row: Dict[str, Any] = {
        "customer_id": request.customer_id,
        "status": PENDING,
        "payment_status": "pending",
        "subtotal": to_money(totals.subtotal),
        "tax_amount": to_money(totals.tax_amount),
        "shipping_cost": to_money(totals.shipping_cost),
        "discount_amount": to_money(totals.discount_amount),
        "total_amount": to_money(totals.total_amount),
        "shipping_address": request.shipping_address.model_dump(exclude_none=True),
        "billing_address": (
            request.billing_address.model_dump(exclude_none=True)
            if request.billing_address is not None
            else None
        ),
        "payment_method": request.payment_method,
        "notes": request.notes,
    }
    for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
        try:
            return await tx.insert_order({**row, "order_number": generate_order_number()})
        except ConflictError as exc:
            if "order_number" not in (exc.constraint or ""):
                raise
            _logger.warning(f"Order number collision (attempt {attempt}), regenerating")
    raise TransactionError(
        f"Could not allocate a unique order number after {ORDER_NUMBER_ATTEMPTS} attempts",
        retryable=True,
    )


async def place_order(
    store: Store,
    customer_id: str,
    items: Sequence[Mapping[str, Any]],
    totals: Mapping[str, Any],
    shipping_address: Mapping[str, Any],
    billing_address: Optional[Mapping[str, Any]] = None,
    payment_method: Optional[str] = None,
    notes: Optional[str] = None,
) -> Order:
    """
    Place an order atomically.

    The payload is validated first; nothing is written when it is rejected.
    Inside one transaction the header is inserted, then each line item
    followed by its stock decrement, then the customer's cart is emptied.
    Any failure rolls back every write made so far.

    Raises:
        ValidationError: malformed payload or inconsistent totals.
        InsufficientStockError: a product has fewer units than requested.
        NotFoundError: a product or artisan does not exist.
        TransactionError: any other store failure.
    """
    request = parse_order_request(
        customer_id,
        items,
        totals,
        shipping_address,
        billing_address=billing_address,
        payment_method=payment_method,
        notes=notes,
    )

    async with store.transaction() as tx:
        order = await _insert_header(tx, request)
        for line in request.items:
            await tx.insert_order_item(
                {
                    "order_id": order.id,
                    "product_id": line.product_id,
                    "artisan_id": line.artisan_id,
                    "quantity": line.quantity,
                    "unit_price": line.unit_price,
                    "total_price": line.total_price,
                    "status": PENDING,
                }
            )
            remaining = await tx.decrement_stock(line.product_id, line.quantity)
            _logger.debug(f"Product {line.product_id} stock now {remaining}")
        cleared = await tx.clear_cart(request.customer_id)

    _logger.info(
        f"Placed order {order.order_number} for customer {customer_id}: "
        f"{len(request.items)} items, total {order.total_amount}, {cleared} cart rows cleared"
    )
    return order


async def get_order(
    store: Store, order_id: str, customer_id: Optional[str] = None
) -> OrderDetail:
    """Order header with its items. Passing ``customer_id`` restricts to that owner."""
    order = await store.get_order(order_id)
    if order is None or (customer_id is not None and order.customer_id != customer_id):
        raise NotFoundError(f"Order {order_id} not found")
    items = await store.get_order_items(order_id)
    return OrderDetail(order=order, items=items)


async def list_orders(
    store: Store,
    customer_id: str,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> List[Order]:
    for name, value in (("limit", limit), ("offset", offset)):
        if value is not None and value < 0:
            raise ValidationError(
                f"{name} must not be negative",
                [{"field": name, "message": "must be >= 0"}],
            )
    return await store.list_orders(customer_id, limit=limit, offset=offset)


async def list_artisan_orders(store: Store, artisan_id: str) -> List[OrderItem]:
    """Order items sold by one artisan, newest order first."""
    if await store.get_artisan_profile_by_id(artisan_id) is None:
        raise NotFoundError(f"Artisan {artisan_id} not found")
    return await store.list_artisan_order_items(artisan_id)


def _item_status_fields(
    new_status: str, tracking_number: Optional[str] = None
) -> Dict[str, Any]:
    fields: Dict[str, Any] = {"status": new_status}
    if tracking_number is not None:
        fields["tracking_number"] = tracking_number
    if new_status == SHIPPED:
        fields["shipped_at"] = utc_now()
    elif new_status == DELIVERED:
        fields["delivered_at"] = utc_now()
    return fields


async def _cancel_items(tx: OrderTransaction, items: Sequence[OrderItem]) -> None:
    sent = [item.id for item in items if item.status in (SHIPPED, DELIVERED)]
    if sent:
        raise ValidationError(f"Order has items that were already shipped: {sent}")
    for item in items:
        if item.status == CANCELLED:
            continue
        await tx.restock(item.product_id, item.quantity)
        await tx.set_order_item_status(item.id, {"status": CANCELLED})


async def cancel_order(store: Store, customer_id: str, order_id: str) -> Order:
    """
    Cancel a customer's own order and put its units back in stock.

    Only pending or processing orders can be cancelled. Someone else's order
    is reported as not found.
    """
    async with store.transaction() as tx:
        order = await tx.get_order_for_update(order_id)
        if order is None or order.customer_id != customer_id:
            raise NotFoundError(f"Order {order_id} not found")
        if order.status not in CANCELLABLE:
            raise ValidationError(
                f"Order {order.order_number} cannot be cancelled once {order.status}"
            )
        await _cancel_items(tx, await tx.get_order_items(order_id))
        cancelled = await tx.set_order_status(order_id, CANCELLED)
    _logger.info(f"Customer {customer_id} cancelled order {order.order_number}")
    return cancelled


async def update_order_status(
    store: Store,
    order_id: str,
    new_status: str,
    tracking_number: Optional[str] = None,
) -> Order:
    """
    Move a whole order to ``new_status``.

    Items that can follow the order are moved with it; cancelling restocks.
    """
    async with store.transaction() as tx:
        order = await tx.get_order_for_update(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        check_transition(order.status, new_status)
        items = await tx.get_order_items(order_id)
        if new_status == CANCELLED:
            await _cancel_items(tx, items)
        else:
            for item in items:
                if can_transition(item.status, new_status):
                    await tx.set_order_item_status(
                        item.id, _item_status_fields(new_status, tracking_number)
                    )
        updated = await tx.set_order_status(order_id, new_status, tracking_number)
    _logger.info(f"Order {order.order_number}: {order.status} -> {new_status}")
    return updated


async def update_order_item_status(
    store: Store,
    artisan_id: str,
    item_id: str,
    new_status: str,
    tracking_number: Optional[str] = None,
) -> OrderItem:
    """
    Move one line item sold by ``artisan_id`` and roll the order status up
    from its items.
    """
    async with store.transaction() as tx:
        item = await tx.get_order_item_for_update(item_id)
        if item is None or item.artisan_id != artisan_id:
            raise NotFoundError(f"Order item {item_id} not found")
        check_transition(item.status, new_status)
        if new_status == CANCELLED:
            await tx.restock(item.product_id, item.quantity)
        updated = await tx.set_order_item_status(
            item_id, _item_status_fields(new_status, tracking_number)
        )

        order = await tx.get_order_for_update(item.order_id)
        if order is None:
            raise NotFoundError(f"Order {item.order_id} not found")
        target = rollup_status(i.status for i in await tx.get_order_items(order.id))
        if target and target != order.status and can_transition(order.status, target):
            await tx.set_order_status(order.id, target)
            _logger.info(f"Order {order.order_number}: {order.status} -> {target}")
    _logger.info(f"Order item {item_id}: {item.status} -> {new_status}")
    return updated
