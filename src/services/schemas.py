"""
Checkout payload schemas.

Pydantic models that validate an order request before anything touches the
store. ``parse_order_request`` converts pydantic's error into the core
``ValidationError`` so callers only ever branch on one taxonomy.
"""

from decimal import Decimal
from typing import Annotated, Any, Dict, List, Mapping, Optional, Sequence

import pydantic
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

from db.errors import ValidationError
from utils.pure import to_money

TOTAL_TOLERANCE = Decimal("0.01")

# rounded to cents before the range check
Money = Annotated[Decimal, BeforeValidator(to_money), Field(ge=0)]


class Address(BaseModel):
    model_config = ConfigDict(extra="allow", str_strip_whitespace=True)

    full_name: Optional[str] = None
    line1: str = Field(..., min_length=1)
    line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: Optional[str] = None
    postal_code: str = Field(..., min_length=1)
    country: str = Field("IN", min_length=2)
    phone: Optional[str] = None


class OrderItemIn(BaseModel):
    product_id: str = Field(..., min_length=1)
    artisan_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    unit_price: Money

    @property
    def total_price(self) -> Decimal:
        return self.unit_price * self.quantity


class OrderTotals(BaseModel):
    subtotal: Money
    tax_amount: Money = Decimal("0")
    shipping_cost: Money = Decimal("0")
    discount_amount: Money = Decimal("0")
    total_amount: Money

    @property
    def expected_total(self) -> Decimal:
        return self.subtotal + self.tax_amount + self.shipping_cost - self.discount_amount

    @model_validator(mode="after")
    def _total_matches(self) -> "OrderTotals":
        if abs(self.total_amount - self.expected_total) > TOTAL_TOLERANCE:
            raise ValueError(
                f"total_amount {self.total_amount} does not equal subtotal + tax_amount"
                f" + shipping_cost - discount_amount ({self.expected_total})"
            )
        return self


class OrderRequest(BaseModel):
    customer_id: str = Field(..., min_length=1)
    items: List[OrderItemIn] = Field(..., min_length=1)
    totals: OrderTotals
    shipping_address: Address
    billing_address: Optional[Address] = None
    payment_method: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = Field(None, max_length=2000)


def _plain_errors(exc: pydantic.ValidationError) -> List[Dict[str, Any]]:
    return [
        {
            "field": ".".join(str(part) for part in err["loc"]),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]


def parse_order_request(
    customer_id: str,
    items: Sequence[Any],
    totals: Any,
    shipping_address: Any,
    billing_address: Any = None,
    payment_method: Optional[str] = None,
    notes: Optional[str] = None,
) -> OrderRequest:
    """Validate a checkout payload, raising ValidationError on any problem."""
    payload: Mapping[str, Any] = {
        "customer_id": customer_id,
        "items": list(items) if items is not None else None,
        "totals": totals,
        "shipping_address": shipping_address,
        "billing_address": billing_address,
        "payment_method": payment_method,
        "notes": notes,
    }
    try:
        return OrderRequest.model_validate(payload)
    except pydantic.ValidationError as exc:
        errors = _plain_errors(exc)
        summary = "; ".join(f"{e['field']}: {e['message']}" for e in errors)
        raise ValidationError(f"Invalid order: {summary}", errors) from None
