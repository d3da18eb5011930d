from __future__ import annotations

import sqlite3
from typing import Iterable, Optional, Protocol

from rpos.domain.models import Cart, Order, OrderLine, OrderTotals, Product
from rpos.repositories.rows import (
    ORDER_COLUMNS,
    PRODUCT_COLUMNS,
    orders_from_rows,
    product_from_row,
)


class UnitOfWork(Protocol):
    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
    def products_for_update(self, product_ids: Iterable[int]) -> dict[int, Product]: ...
    def set_product_quantity(self, product_id: int, quantity: int, updated_at: str) -> None: ...
    def record_movement(
        self,
        datetime_iso: str,
        product_id: int,
        qty_delta: int,
        quantity_after: int,
        reference_type: str,
        reference_id: Optional[int],
        notes: Optional[str],
    ) -> None: ...
    def insert_product(
        self,
        name: str,
        price: float,
        quantity: int,
        category_id: Optional[int],
        category_name: Optional[str],
        serial_number: Optional[str],
        barcode: Optional[str],
        created_at: str,
    ) -> int: ...
    def active_products_in_category(self, category_id: int) -> int: ...
    def delete_category(self, category_id: int) -> bool: ...
    def order_number_exists(self, order_number: str) -> bool: ...
    def insert_order(self, order_number: str, cart: Cart, totals: OrderTotals, order_date: str) -> int: ...
    def insert_order_items(self, order_id: int, items: Iterable[OrderLine]) -> None: ...
    def get_order(self, order_id: int) -> Optional[Order]: ...
    def replace_order_items(self, order_id: int, items: Iterable[OrderLine], totals: OrderTotals, updated_at: str) -> None: ...


class SqliteUnitOfWork:
    """One write transaction on its own connection.

    BEGIN IMMEDIATE takes the write lock up front, so everything read through
    this object reflects the latest committed state and cannot change until
    commit or rollback.
    """

    def __init__(self, repo):
        self.repo = repo
        self.conn: sqlite3.Connection | None = None
        self.cur: sqlite3.Cursor | None = None

    def __enter__(self) -> "SqliteUnitOfWork":
        conn = self.repo._conn(autocommit=True)
        try:
            conn.execute("BEGIN IMMEDIATE")
        except Exception:
            conn.close()
            raise
        self.conn = conn
        self.cur = conn.cursor()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        conn = self.conn
        self.conn = None
        self.cur = None
        if conn is None:
            return None
        try:
            if exc_type is None:
                try:
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise
            else:
                conn.execute("ROLLBACK")
        finally:
            conn.close()
        return None

    # ---------- Stock ----------
    def products_for_update(self, product_ids: Iterable[int]) -> dict[int, Product]:
        ids = sorted({int(pid) for pid in product_ids})
        if not ids:
            return {}
        marks = ",".join("?" for _ in ids)
        self.cur.execute(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE id IN ({marks})", tuple(ids))
        return {int(r[0]): product_from_row(r) for r in self.cur.fetchall()}

    def set_product_quantity(self, product_id: int, quantity: int, updated_at: str) -> None:
        self.cur.execute(
            "UPDATE products SET quantity=?, updated_at=? WHERE id=?",
            (int(quantity), updated_at, int(product_id)),
        )

    def record_movement(
        self,
        datetime_iso: str,
        product_id: int,
        qty_delta: int,
        quantity_after: int,
        reference_type: str,
        reference_id: Optional[int],
        notes: Optional[str],
    ) -> None:
        self.cur.execute(
            """
            INSERT INTO stock_movements (
                datetime, product_id, qty_delta, quantity_after, reference_type, reference_id, notes
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (datetime_iso, int(product_id), int(qty_delta), int(quantity_after), reference_type, reference_id, notes),
        )

    def insert_product(
        self,
        name: str,
        price: float,
        quantity: int,
        category_id: Optional[int],
        category_name: Optional[str],
        serial_number: Optional[str],
        barcode: Optional[str],
        created_at: str,
    ) -> int:
        self.cur.execute(
            """
            INSERT INTO products (
                name, price, quantity, category_id, category_name, serial_number, barcode, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (name, float(price), int(quantity), category_id, category_name, serial_number, barcode, created_at, created_at),
        )
        return int(self.cur.lastrowid)

    # ---------- Categories ----------
    def active_products_in_category(self, category_id: int) -> int:
        self.cur.execute(
            "SELECT COUNT(*) FROM products WHERE category_id=? AND active=1",
            (int(category_id),),
        )
        return int(self.cur.fetchone()[0])

    def delete_category(self, category_id: int) -> bool:
        # deactivated products keep their category_name copy but drop the link
        self.cur.execute(
            "UPDATE products SET category_id=NULL WHERE category_id=? AND active=0",
            (int(category_id),),
        )
        self.cur.execute("DELETE FROM categories WHERE id=?", (int(category_id),))
        return self.cur.rowcount > 0

    # ---------- Orders ----------
    def order_number_exists(self, order_number: str) -> bool:
        self.cur.execute("SELECT 1 FROM orders WHERE order_number=?", (order_number,))
        return self.cur.fetchone() is not None

    def insert_order(self, order_number: str, cart: Cart, totals: OrderTotals, order_date: str) -> int:
        self.cur.execute(
            """
            INSERT INTO orders (
                order_number, customer_id, customer_name, customer_mobile, customer_address,
                subtotal, tax_amount, total_amount, order_date, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                order_number,
                cart.customer_id,
                cart.customer_name,
                cart.customer_mobile,
                cart.customer_address,
                float(totals.subtotal),
                float(totals.tax_amount),
                float(totals.total_amount),
                order_date,
                order_date,
                order_date,
            ),
        )
        return int(self.cur.lastrowid)

    def get_order(self, order_id: int) -> Optional[Order]:
        self.cur.execute(f"SELECT {ORDER_COLUMNS} FROM orders WHERE id=?", (int(order_id),))
        row = self.cur.fetchone()
        if not row:
            return None
        return orders_from_rows(self.cur, [row])[0]

    def replace_order_items(self, order_id: int, items: Iterable[OrderLine], totals: OrderTotals, updated_at: str) -> None:
        self.cur.execute("DELETE FROM order_items WHERE order_id=?", (int(order_id),))
        self.insert_order_items(int(order_id), items)
        self.cur.execute(
            """
            UPDATE orders
            SET subtotal=?, tax_amount=?, total_amount=?, updated_at=?
            WHERE id=?
            """,
            (float(totals.subtotal), float(totals.tax_amount), float(totals.total_amount), updated_at, int(order_id)),
        )

    def insert_order_items(self, order_id: int, items: Iterable[OrderLine]) -> None:
        for line_no, it in enumerate(items, start=1):
            self.cur.execute(
                """
                INSERT INTO order_items (
                    order_id, line_no, product_id, name, price, bill_quantity, serial_number, barcode
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    order_id,
                    line_no,
                    int(it.product_id),
                    it.name,
                    float(it.price),
                    int(it.bill_quantity),
                    it.serial_number,
                    it.barcode,
                ),
            )
