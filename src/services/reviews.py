# product reviews
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from db.errors import NotFoundError, ValidationError
from db.models import Review
from db.store import Store
from services.catalog import check_paging
from utils.logger import get_logger

_logger = get_logger(__name__)

MIN_RATING = 1
MAX_RATING = 5


async def list_product_reviews(
    store: Store, product_id: str, limit: Optional[int] = None, offset: Optional[int] = None
) -> List[Review]:
    check_paging(limit, offset)
    return await store.list_product_reviews(product_id, limit=limit, offset=offset)


def _review_errors(rating: Any, images: Any) -> List[Dict[str, str]]:
    errors = []
    if (
        isinstance(rating, bool)
        or not isinstance(rating, int)
        or not MIN_RATING <= rating <= MAX_RATING
    ):
        errors.append(
            {"field": "rating", "message": f"must be an integer from {MIN_RATING} to {MAX_RATING}"}
        )
    if images is not None and (
        isinstance(images, str) or not all(isinstance(i, str) for i in images)
    ):
        errors.append({"field": "images", "message": "must be a list of URLs"})
    return errors


async def create_review(
    store: Store,
    customer_id: str,
    product_id: str,
    rating: int,
    title: Optional[str] = None,
    comment: Optional[str] = None,
    images: Optional[Sequence[str]] = None,
    order_item_id: Optional[str] = None,
) -> Review:
    """
    Post a review of a product.

    A review linked to ``order_item_id`` is marked as a verified purchase; the
    item must come from one of the customer's own orders for this product.

    Raises:
        ValidationError: rating outside 1..5, bad images, or an order item
            that does not match the customer and product.
        NotFoundError: unknown product, customer profile or order item.
    """
    errors = _review_errors(rating, images)
    if errors:
        raise ValidationError(
            "Invalid review: " + ", ".join(f"{e['field']} {e['message']}" for e in errors),
            errors,
        )
    if await store.get_product(product_id) is None:
        raise NotFoundError(f"Product {product_id} not found")
    if await store.get_profile(customer_id) is None:
        raise NotFoundError(f"Profile {customer_id} not found")

    if order_item_id is not None:
        item = await store.get_order_item(order_item_id)
        if item is None:
            raise NotFoundError(f"Order item {order_item_id} not found")
        order = await store.get_order(item.order_id)
        if item.product_id != product_id or order is None or order.customer_id != customer_id:
            raise ValidationError(
                f"Order item {order_item_id} is not a purchase of this product by the customer",
                [{"field": "order_item_id", "message": "does not match the review"}],
            )

    review = await store.insert_review(
        {
            "product_id": product_id,
            "customer_id": customer_id,
            "order_item_id": order_item_id,
            "rating": rating,
            "title": title,
            "comment": comment,
            "images": list(images or []),
            "is_verified_purchase": order_item_id is not None,
        }
    )
    _logger.info(
        f"Customer {customer_id} rated product {product_id} {rating}/{MAX_RATING}"
        + (" (verified purchase)" if review.is_verified_purchase else "")
    )
    return review
