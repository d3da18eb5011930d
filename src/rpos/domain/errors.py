from __future__ import annotations

from typing import Optional


class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class EmptyOrderError(ValidationError):
    """An order must keep at least one line with a positive quantity."""


class NotFoundError(AppError):
    pass


class InsufficientStockError(AppError):
    """A stock batch would drive one product below zero.

    Carries the offending product so the caller can point at the exact line.
    """

    def __init__(self, product_id: int, requested: int, available: int, product_name: Optional[str] = None):
        self.product_id = int(product_id)
        self.requested = int(requested)
        self.available = int(available)
        self.product_name = product_name
        label = product_name or f"product {self.product_id}"
        super().__init__(f"Not enough stock for {label}. Requested: {self.requested}, available: {self.available}")


class OrderNumberCollisionError(AppError):
    """Order number already taken. Not retried automatically."""


class StoreUnavailableError(AppError):
    """The store stayed busy or locked after every retry attempt."""
