from __future__ import annotations

import sqlite3
from collections import defaultdict
from typing import Iterable, Sequence

from rpos.domain.models import Customer, Order, OrderLine, Product, StockMovement

PRODUCT_COLUMNS = (
    "id, name, price, quantity, category_id, category_name, serial_number, barcode, active, created_at, updated_at"
)
ORDER_COLUMNS = (
    "id, order_number, customer_id, customer_name, customer_mobile, customer_address, "
    "subtotal, tax_amount, total_amount, order_date, created_at, updated_at"
)
CUSTOMER_COLUMNS = "id, name, mobile_number, email, address"
MOVEMENT_COLUMNS = "id, datetime, product_id, qty_delta, quantity_after, reference_type, reference_id, notes"


def _opt_str(v) -> str | None:
    return str(v) if v is not None else None


def product_from_row(r: Sequence) -> Product:
    return Product(
        id=int(r[0]),
        name=str(r[1]),
        price=float(r[2]),
        quantity=int(r[3]),
        category_id=(int(r[4]) if r[4] is not None else None),
        category_name=_opt_str(r[5]),
        serial_number=_opt_str(r[6]),
        barcode=_opt_str(r[7]),
        active=int(r[8]),
        created_at=_opt_str(r[9]),
        updated_at=_opt_str(r[10]),
    )


def customer_from_row(r: Sequence) -> Customer:
    return Customer(
        id=int(r[0]),
        name=str(r[1]),
        mobile_number=str(r[2]),
        email=_opt_str(r[3]),
        address=_opt_str(r[4]),
    )


def movement_from_row(r: Sequence) -> StockMovement:
    return StockMovement(
        id=int(r[0]),
        datetime=str(r[1]),
        product_id=int(r[2]),
        qty_delta=int(r[3]),
        quantity_after=int(r[4]),
        reference_type=str(r[5]),
        reference_id=(int(r[6]) if r[6] is not None else None),
        notes=_opt_str(r[7]),
    )


def order_from_row(r: Sequence, items: Iterable[OrderLine]) -> Order:
    return Order(
        id=int(r[0]),
        order_number=str(r[1]),
        customer_id=str(r[2]),
        customer_name=str(r[3]),
        customer_mobile=str(r[4]),
        customer_address=_opt_str(r[5]),
        items=tuple(items),
        subtotal=float(r[6]),
        tax_amount=float(r[7]),
        total_amount=float(r[8]),
        order_date=str(r[9]),
        created_at=str(r[10]),
        updated_at=str(r[11]),
    )


def load_order_items(cur: sqlite3.Cursor, order_ids: Sequence[int]) -> dict[int, list[OrderLine]]:
    out: dict[int, list[OrderLine]] = defaultdict(list)
    if not order_ids:
        return out
    marks = ",".join("?" for _ in order_ids)
    cur.execute(
        f"""
        SELECT order_id, product_id, name, price, bill_quantity, serial_number, barcode
        FROM order_items
        WHERE order_id IN ({marks})
        ORDER BY order_id, line_no
        """,
        tuple(int(i) for i in order_ids),
    )
    for r in cur.fetchall():
        out[int(r[0])].append(
            OrderLine(
                product_id=int(r[1]),
                name=str(r[2]),
                price=float(r[3]),
                bill_quantity=int(r[4]),
                serial_number=_opt_str(r[5]),
                barcode=_opt_str(r[6]),
            )
        )
    return out


def orders_from_rows(cur: sqlite3.Cursor, rows: Sequence[Sequence]) -> list[Order]:
    items = load_order_items(cur, [int(r[0]) for r in rows])
    return [order_from_row(r, items.get(int(r[0]), [])) for r in rows]
