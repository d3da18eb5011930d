from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, Optional


WALK_IN_CUSTOMER_ID = "WALK_IN_CUSTOMER"
WALK_IN_CUSTOMER_NAME = "Walk-in Customer"
WALK_IN_CUSTOMER_MOBILE = "N/A"


@dataclass(frozen=True)
class Category:
    id: int
    name: str


@dataclass(frozen=True)
class Product:
    id: int
    name: str
    price: float
    quantity: int
    category_id: Optional[int] = None
    # denormalized copy, can lag behind a category rename
    category_name: Optional[str] = None
    serial_number: Optional[str] = None
    barcode: Optional[str] = None
    active: int = 1
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class Customer:
    id: int
    name: str
    mobile_number: str
    email: Optional[str] = None
    address: Optional[str] = None


@dataclass(frozen=True)
class OrderLine:
    product_id: int
    name: str
    price: float
    bill_quantity: int
    serial_number: Optional[str] = None
    barcode: Optional[str] = None

    @property
    def line_total(self) -> float:
        return float(self.price) * int(self.bill_quantity)


@dataclass(frozen=True)
class Cart:
    lines: tuple[OrderLine, ...]
    customer_id: str = WALK_IN_CUSTOMER_ID
    customer_name: str = WALK_IN_CUSTOMER_NAME
    customer_mobile: str = WALK_IN_CUSTOMER_MOBILE
    customer_address: Optional[str] = None


@dataclass(frozen=True)
class Order:
    id: int
    order_number: str
    customer_id: str
    customer_name: str
    customer_mobile: str
    customer_address: Optional[str]
    items: tuple[OrderLine, ...]
    subtotal: float
    tax_amount: float
    total_amount: float
    order_date: str
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class OrderTotals:
    subtotal: float
    tax_amount: float
    total_amount: float


@dataclass(frozen=True)
class StockMovement:
    id: int
    datetime: str
    product_id: int
    qty_delta: int
    quantity_after: int
    reference_type: str
    reference_id: Optional[int]
    notes: Optional[str]


@dataclass(frozen=True)
class StockDiscrepancy:
    product_id: int
    quantity: int
    journal_total: int


def compute_totals(lines: Iterable[OrderLine], tax_rate: float) -> OrderTotals:
    subtotal = sum(line.line_total for line in lines)
    tax_amount = subtotal * float(tax_rate)
    return OrderTotals(subtotal=subtotal, tax_amount=tax_amount, total_amount=subtotal + tax_amount)
