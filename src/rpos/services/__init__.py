from .stock_ledger import StockLedger
from .order_service import OrderService
from .inventory_service import InventoryService
from .customer_service import CustomerService
from .pagination_service import CursorState, PageCursor, PageResult, PaginationService
from .reporting_service import ReportingService

__all__ = [
    "StockLedger",
    "OrderService",
    "InventoryService",
    "CustomerService",
    "CursorState",
    "PageCursor",
    "PageResult",
    "PaginationService",
    "ReportingService",
]
