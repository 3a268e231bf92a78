# order and order item status machine
from typing import Dict, FrozenSet, Iterable, Optional

from db.errors import ValidationError
from db.models import ORDER_STATUSES

PENDING, PROCESSING, SHIPPED, DELIVERED, CANCELLED = ORDER_STATUSES

# processing is optional: a pending order may ship directly
TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PENDING: frozenset({PROCESSING, SHIPPED, CANCELLED}),
    PROCESSING: frozenset({SHIPPED, CANCELLED}),
    SHIPPED: frozenset({DELIVERED}),
    DELIVERED: frozenset(),
    CANCELLED: frozenset(),
}
TERMINAL = frozenset({DELIVERED, CANCELLED})
CANCELLABLE = frozenset({PENDING, PROCESSING})


def is_terminal(status: str) -> bool:
    return status in TERMINAL


def can_transition(current: str, new: str) -> bool:
    return new in TRANSITIONS.get(current, frozenset())


def check_transition(current: str, new: str) -> None:
    """Raise ValidationError unless ``current -> new`` is a legal move."""
    if new not in TRANSITIONS:
        raise ValidationError(f"Unknown order status {new!r}")
    if is_terminal(current):
        raise ValidationError(f"Order status {current!r} is final")
    if not can_transition(current, new):
        raise ValidationError(f"Cannot move an order from {current!r} to {new!r}")


def rollup_status(item_statuses: Iterable[str]) -> Optional[str]:
    """
    Derive an order status from its items' statuses.

    Cancelled items are ignored unless every item is cancelled. Returns None
    when there are no items.
    """
    statuses = list(item_statuses)
    if not statuses:
        return None
    active = [s for s in statuses if s != CANCELLED]
    if not active:
        return CANCELLED
    if all(s == DELIVERED for s in active):
        return DELIVERED
    if all(s in (SHIPPED, DELIVERED) for s in active):
        return SHIPPED
    if any(s in (PROCESSING, SHIPPED, DELIVERED) for s in active):
        return PROCESSING
    return PENDING
