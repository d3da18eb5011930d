from .models import (
    Cart,
    Category,
    Customer,
    Order,
    OrderLine,
    OrderTotals,
    Product,
    StockDiscrepancy,
    StockMovement,
    WALK_IN_CUSTOMER_ID,
    compute_totals,
)
from .errors import (
    AppError,
    EmptyOrderError,
    InsufficientStockError,
    NotFoundError,
    OrderNumberCollisionError,
    StoreUnavailableError,
    ValidationError,
)

__all__ = [
    "Cart",
    "Category",
    "Customer",
    "Order",
    "OrderLine",
    "OrderTotals",
    "Product",
    "StockDiscrepancy",
    "StockMovement",
    "WALK_IN_CUSTOMER_ID",
    "compute_totals",
    "AppError",
    "EmptyOrderError",
    "InsufficientStockError",
    "NotFoundError",
    "OrderNumberCollisionError",
    "StoreUnavailableError",
    "ValidationError",
]
