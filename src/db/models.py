# provide dataclass models
from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, TypeVar

from utils.pure import to_money

# columns holding fixed point amounts (2 decimals)
MONEY_FIELDS = frozenset(
    {
        "price",
        "original_price",
        "subtotal",
        "tax_amount",
        "shipping_cost",
        "discount_amount",
        "total_amount",
        "unit_price",
        "total_price",
        "commission_rate",
        "total_sales",
    }
)
TIMESTAMP_FIELDS = frozenset({"created_at", "updated_at", "shipped_at", "delivered_at"})

# columns stored as JSON documents; list typed ones default to []
ARTISAN_LIST_FIELDS = (
    "specialties",
    "portfolio_images",
    "certificates",
    "awards",
    "payment_methods",
)
ARTISAN_MAPPING_FIELDS = (
    "social_media",
    "business_hours",
    "delivery_info",
    "notification_preferences",
)
JSON_FIELDS = frozenset(
    ARTISAN_LIST_FIELDS
    + ARTISAN_MAPPING_FIELDS
    + (
        "images",
        "product_images",
        "tags",
        "address",
        "shipping_address",
        "billing_address",
    )
)
BOOL_FIELDS = frozenset(
    {"is_active", "is_featured", "email_verified", "is_verified_purchase"}
)

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")

T = TypeVar("T")


def _coerce(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name in MONEY_FIELDS:
        return to_money(value)
    if name in TIMESTAMP_FIELDS:
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value
    if name in BOOL_FIELDS:
        return bool(value)
    if name in JSON_FIELDS and isinstance(value, str):
        return json.loads(value)
    if name == "product_names":
        if isinstance(value, str):
            value = json.loads(value)
        return tuple(v for v in value if v is not None)
    return value


def from_row(cls: Type[T], row: Mapping[str, Any]) -> T:
    """Build a model from a row mapping, converting stored representations.

    Columns the model does not declare are ignored, so ``SELECT *`` rows and
    joined rows can be passed directly.
    """
    values = {
        f.name: _coerce(f.name, row[f.name]) for f in fields(cls) if f.name in row
    }
    return cls(**values)  # type: ignore[call-arg]


@dataclass(frozen=True)
class Profile:
    id: str  # same as users.id
    first_name: str
    last_name: str
    email: str
    full_name: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    date_of_birth: Optional[str] = None
    address: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class ArtisanProfile:
    id: str
    user_id: str
    shop_name: str
    description: Optional[str] = None
    specialties: List[str] = field(default_factory=list)
    location: Optional[str] = None
    business_license: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    established_year: Optional[int] = None
    experience_years: Optional[int] = None
    verification_status: str = "pending"
    status: str = "active"
    commission_rate: Decimal = Decimal("10.00")
    total_sales: Decimal = Decimal("0.00")
    total_orders: int = 0
    rating: Optional[float] = None
    banner_image: Optional[str] = None
    shop_logo: Optional[str] = None
    social_media: Optional[Dict[str, Any]] = None
    business_hours: Optional[Dict[str, Any]] = None
    portfolio_images: List[str] = field(default_factory=list)
    certificates: List[str] = field(default_factory=list)
    awards: List[str] = field(default_factory=list)
    delivery_info: Optional[Dict[str, Any]] = None
    payment_methods: List[str] = field(default_factory=list)
    return_policy: Optional[str] = None
    shipping_policy: Optional[str] = None
    preferred_language: Optional[str] = None
    notification_preferences: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    parent_id: Optional[str] = None
    sort_order: int = 0
    is_active: bool = True


@dataclass(frozen=True)
class Product:
    id: str
    artisan_id: str
    category_id: str
    name: str
    description: str
    price: Decimal
    stock_quantity: int
    original_price: Optional[Decimal] = None
    images: List[str] = field(default_factory=list)
    tags: Optional[List[str]] = None
    sku: Optional[str] = None
    is_active: bool = True
    is_featured: bool = False
    views_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # joined by list_products
    category_name: Optional[str] = None
    category_slug: Optional[str] = None
    artisan_shop_name: Optional[str] = None


@dataclass(frozen=True)
class Review:
    id: str
    product_id: str
    customer_id: str
    rating: int
    order_item_id: Optional[str] = None
    title: Optional[str] = None
    comment: Optional[str] = None
    images: List[str] = field(default_factory=list)
    is_verified_purchase: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # joined from profiles
    customer_name: Optional[str] = None
    customer_avatar: Optional[str] = None


@dataclass(frozen=True)
class CartItem:
    id: str
    user_id: str
    product_id: str
    quantity: int
    # joined from products / artisan_profiles
    product_name: Optional[str] = None
    price: Optional[Decimal] = None
    images: Optional[List[str]] = None
    stock_quantity: Optional[int] = None
    artisan_id: Optional[str] = None
    artisan_shop_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Order:
    id: str
    order_number: str
    customer_id: str
    status: str
    payment_status: str
    subtotal: Decimal
    tax_amount: Decimal
    shipping_cost: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    shipping_address: Dict[str, Any]
    currency: str = "INR"
    payment_method: Optional[str] = None
    billing_address: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    tracking_number: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # only present on list_orders summaries
    item_count: Optional[int] = None
    product_names: Tuple[str, ...] = ()


@dataclass(frozen=True)
class OrderItem:
    id: str
    order_id: str
    product_id: str
    artisan_id: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    status: str = "pending"
    tracking_number: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # joined display fields
    product_name: Optional[str] = None
    product_images: Optional[List[str]] = None
    artisan_shop_name: Optional[str] = None
    order_number: Optional[str] = None


@dataclass(frozen=True)
class OrderDetail:
    order: Order
    items: List[OrderItem]
