# error taxonomy raised by the store adapters and the services built on them
from __future__ import annotations

from typing import Any, Dict, List, Optional


class KarigarError(Exception):
    """Base class for every error the core raises on purpose."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(KarigarError):
    """Malformed or inconsistent input. Raised before any write is attempted."""

    status_code = 400

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class NotFoundError(KarigarError):
    status_code = 404


class ConflictError(KarigarError):
    """A uniqueness constraint was violated."""

    status_code = 409

    def __init__(self, message: str, constraint: Optional[str] = None):
        super().__init__(message)
        self.constraint = constraint


class InsufficientStockError(KarigarError):
    status_code = 409

    def __init__(self, product_id: str, requested: int, available: Optional[int]):
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available if available is not None else 0}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class TransactionError(KarigarError):
    """
    A store level failure during a write. Nothing from the failed unit of work
    was persisted; ``retryable`` is set for timeouts and lock contention.
    """

    status_code = 500

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable
