from __future__ import annotations

import logging
import shutil
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence, TypeVar

from rpos.domain.errors import StoreUnavailableError, ValidationError
from rpos.domain.models import Category, Customer, Order, Product, StockMovement
from rpos.repositories.rows import (
    CUSTOMER_COLUMNS,
    MOVEMENT_COLUMNS,
    ORDER_COLUMNS,
    PRODUCT_COLUMNS,
    customer_from_row,
    movement_from_row,
    orders_from_rows,
    product_from_row,
)
from rpos.repositories.unit_of_work import SqliteUnitOfWork

log = logging.getLogger(__name__)

T = TypeVar("T")


def now_iso() -> str:
    return datetime.now().isoformat(sep=" ", timespec="milliseconds")


def _is_busy(exc: sqlite3.OperationalError) -> bool:
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


@dataclass(frozen=True)
class PageSource:
    table: str
    columns: str
    sort_keys: tuple[str, ...]
    filters: tuple[str, ...]
    base_where: Optional[str] = None


PAGE_SOURCES: dict[str, PageSource] = {
    "products": PageSource(
        table="products",
        columns=PRODUCT_COLUMNS,
        sort_keys=("name", "price", "quantity", "created_at"),
        filters=("category_id",),
        base_where="active = 1",
    ),
    "orders": PageSource(
        table="orders",
        columns=ORDER_COLUMNS,
        sort_keys=("order_date", "order_number", "total_amount", "customer_name"),
        filters=("customer_id",),
    ),
}


class SqliteRepository:
    def __init__(
        self,
        db_path: Path | str,
        busy_timeout: float = 5.0,
        retry_attempts: int = 3,
        retry_backoff: float = 0.05,
    ):
        self.db_path = str(db_path)
        self.busy_timeout = float(busy_timeout)
        self.retry_attempts = max(1, int(retry_attempts))
        self.retry_backoff = float(retry_backoff)

    def _conn(self, autocommit: bool = False) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.busy_timeout,
            isolation_level=None if autocommit else "",
        )
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def init_db(self) -> None:
        self.run_migrations()

    def run_migrations(self) -> None:
        backup_path = self._create_pre_migration_backup()
        conn = self._conn(autocommit=True)
        try:
            conn.execute("PRAGMA journal_mode = WAL;")
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_base),
                (2, self._migration_v2_page_indexes),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
                log.info("migration_applied version=%s", version)
            cur.execute("COMMIT")
        except Exception as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)
        log.warning("migration_rolled_back restored=%s", backup_path.name)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS categories (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS customers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                mobile_number TEXT NOT NULL,
                email TEXT,
                address TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                price REAL NOT NULL CHECK(price >= 0),
                quantity INTEGER NOT NULL DEFAULT 0 CHECK(quantity >= 0),
                category_id INTEGER REFERENCES categories(id),
                category_name TEXT,
                serial_number TEXT,
                barcode TEXT,
                active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1)),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                CHECK(serial_number IS NOT NULL OR barcode IS NOT NULL)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS orders (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                order_number TEXT NOT NULL UNIQUE,
                customer_id TEXT NOT NULL,
                customer_name TEXT NOT NULL,
                customer_mobile TEXT NOT NULL,
                customer_address TEXT,
                subtotal REAL NOT NULL,
                tax_amount REAL NOT NULL,
                total_amount REAL NOT NULL,
                order_date TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS order_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                order_id INTEGER NOT NULL,
                line_no INTEGER NOT NULL,
                product_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                price REAL NOT NULL CHECK(price >= 0),
                bill_quantity INTEGER NOT NULL CHECK(bill_quantity > 0),
                serial_number TEXT,
                barcode TEXT,
                FOREIGN KEY(order_id) REFERENCES orders(id) ON DELETE CASCADE,
                FOREIGN KEY(product_id) REFERENCES products(id),
                UNIQUE(order_id, line_no)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS stock_movements (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                datetime TEXT NOT NULL,
                product_id INTEGER NOT NULL,
                qty_delta INTEGER NOT NULL,
                quantity_after INTEGER NOT NULL CHECK(quantity_after >= 0),
                reference_type TEXT NOT NULL CHECK(reference_type IN ('opening','order_create','order_edit','manual')),
                reference_id INTEGER,
                notes TEXT,
                FOREIGN KEY(product_id) REFERENCES products(id)
            )
            """
        )

    def _migration_v2_page_indexes(self, cur: sqlite3.Cursor) -> None:
        # keyset pagination walks (sort_key, id)
        for table, sort_keys in (("products", PAGE_SOURCES["products"].sort_keys), ("orders", PAGE_SOURCES["orders"].sort_keys)):
            for key in sort_keys:
                cur.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_{key}_id ON {table} ({key}, id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_products_serial ON products (serial_number)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_products_barcode ON products (barcode)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_order_items_order ON order_items (order_id, line_no)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_stock_movements_product ON stock_movements (product_id, id)")

    # ---------- Transactions ----------
    def unit_of_work(self) -> SqliteUnitOfWork:
        return SqliteUnitOfWork(self)

    def run_in_transaction(self, work: Callable[[SqliteUnitOfWork], T]) -> T:
        """Run ``work`` inside one write transaction, retrying while the store is busy.

        Domain errors raised by ``work`` roll the transaction back and propagate
        untouched. Only lock contention is retried; after the last attempt it
        surfaces as StoreUnavailableError.
        """
        last_err: sqlite3.OperationalError | None = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                with self.unit_of_work() as uow:
                    return work(uow)
            except sqlite3.OperationalError as e:
                if not _is_busy(e):
                    raise StoreUnavailableError(f"Store error: {e}") from e
                last_err = e
                log.warning("store_busy_retry attempt=%s/%s error=%s", attempt, self.retry_attempts, e)
                if attempt < self.retry_attempts:
                    time.sleep(self.retry_backoff * attempt)
        raise StoreUnavailableError(
            f"Store still busy after {self.retry_attempts} attempts: {last_err}"
        ) from last_err

    # ---------- Categories ----------
    def add_category(self, name: str) -> int:
        ts = now_iso()
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "INSERT INTO categories (name, created_at, updated_at) VALUES (?, ?, ?)",
            (name, ts, ts),
        )
        cid = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return cid

    def get_category(self, category_id: int) -> Optional[Category]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, name FROM categories WHERE id=?", (int(category_id),))
        r = cur.fetchone()
        conn.close()
        return Category(id=int(r[0]), name=str(r[1])) if r else None

    def get_category_by_name(self, name: str) -> Optional[Category]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, name FROM categories WHERE name=? LIMIT 1", (name,))
        r = cur.fetchone()
        conn.close()
        return Category(id=int(r[0]), name=str(r[1])) if r else None

    def list_categories(self) -> list[Category]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, name FROM categories ORDER BY name, id")
        rows = cur.fetchall()
        conn.close()
        return [Category(id=int(r[0]), name=str(r[1])) for r in rows]

    def rename_category(self, category_id: int, name: str) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "UPDATE categories SET name=?, updated_at=? WHERE id=?",
            (name, now_iso(), int(category_id)),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    # ---------- Products ----------
    def list_products(self, include_inactive: bool = False) -> list[Product]:
        conn = self._conn()
        cur = conn.cursor()
        where = "" if include_inactive else "WHERE active = 1"
        cur.execute(f"SELECT {PRODUCT_COLUMNS} FROM products {where} ORDER BY name, id")
        rows = cur.fetchall()
        conn.close()
        return [product_from_row(r) for r in rows]

    def get_product_by_id(self, product_id: int, include_inactive: bool = False) -> Optional[Product]:
        conn = self._conn()
        cur = conn.cursor()
        active = "" if include_inactive else "AND active=1"
        cur.execute(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE id=? {active}", (int(product_id),))
        r = cur.fetchone()
        conn.close()
        return product_from_row(r) if r else None

    def _find_product_by(self, column: str, value: str) -> Optional[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT {PRODUCT_COLUMNS} FROM products WHERE active=1 AND {column}=? ORDER BY id LIMIT 1",
            (value,),
        )
        r = cur.fetchone()
        conn.close()
        return product_from_row(r) if r else None

    def find_product_by_serial(self, serial_number: str) -> Optional[Product]:
        return self._find_product_by("serial_number", serial_number)

    def find_product_by_barcode(self, barcode: str) -> Optional[Product]:
        return self._find_product_by("barcode", barcode)

    def update_product_details(
        self,
        product_id: int,
        name: str,
        price: float,
        category_id: Optional[int],
        category_name: Optional[str],
        serial_number: Optional[str],
        barcode: Optional[str],
    ) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            UPDATE products
            SET name=?, price=?, category_id=?, category_name=?, serial_number=?, barcode=?, updated_at=?
            WHERE id=? AND active=1
            """,
            (name, float(price), category_id, category_name, serial_number, barcode, now_iso(), int(product_id)),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def deactivate_product(self, product_id: int) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "UPDATE products SET active=0, updated_at=? WHERE id=? AND active=1",
            (now_iso(), int(product_id)),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    # ---------- Customers ----------
    def add_customer(self, name: str, mobile_number: str, email: Optional[str], address: Optional[str]) -> int:
        ts = now_iso()
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO customers (name, mobile_number, email, address, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (name, mobile_number, email, address, ts, ts),
        )
        cid = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return cid

    def get_customer(self, customer_id: int) -> Optional[Customer]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {CUSTOMER_COLUMNS} FROM customers WHERE id=?", (int(customer_id),))
        r = cur.fetchone()
        conn.close()
        return customer_from_row(r) if r else None

    def find_customers_by_mobile(self, mobile_number: str) -> list[Customer]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT {CUSTOMER_COLUMNS} FROM customers WHERE mobile_number=? ORDER BY name, id",
            (mobile_number,),
        )
        rows = cur.fetchall()
        conn.close()
        return [customer_from_row(r) for r in rows]

    def list_customers(self) -> list[Customer]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {CUSTOMER_COLUMNS} FROM customers ORDER BY name, id")
        rows = cur.fetchall()
        conn.close()
        return [customer_from_row(r) for r in rows]

    def update_customer(
        self,
        customer_id: int,
        name: str,
        mobile_number: str,
        email: Optional[str],
        address: Optional[str],
    ) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            UPDATE customers
            SET name=?, mobile_number=?, email=?, address=?, updated_at=?
            WHERE id=?
            """,
            (name, mobile_number, email, address, now_iso(), int(customer_id)),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    # ---------- Orders ----------
    def get_order(self, order_id: int) -> Optional[Order]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"SELECT {ORDER_COLUMNS} FROM orders WHERE id=?", (int(order_id),))
        r = cur.fetchone()
        order = orders_from_rows(cur, [r])[0] if r else None
        conn.close()
        return order

    def list_orders_between(self, start_iso: Optional[str], end_iso: Optional[str]) -> list[Order]:
        conn = self._conn()
        cur = conn.cursor()
        where, params = [], []
        if start_iso:
            where.append("order_date >= ?")
            params.append(start_iso)
        if end_iso:
            where.append("order_date < ?")
            params.append(end_iso)
        clause = f"WHERE {' AND '.join(where)}" if where else ""
        cur.execute(f"SELECT {ORDER_COLUMNS} FROM orders {clause} ORDER BY order_date DESC, id DESC", tuple(params))
        orders = orders_from_rows(cur, cur.fetchall())
        conn.close()
        return orders

    def sold_quantities(self) -> dict[int, int]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT product_id, COALESCE(SUM(bill_quantity), 0) FROM order_items GROUP BY product_id")
        rows = cur.fetchall()
        conn.close()
        return {int(r[0]): int(r[1]) for r in rows}

    # ---------- Stock journal ----------
    def movements_for_product(self, product_id: int) -> list[StockMovement]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"SELECT {MOVEMENT_COLUMNS} FROM stock_movements WHERE product_id=? ORDER BY id",
            (int(product_id),),
        )
        rows = cur.fetchall()
        conn.close()
        return [movement_from_row(r) for r in rows]

    def stock_vs_journal(self) -> list[tuple[int, int, int]]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT p.id, p.quantity, COALESCE(SUM(m.qty_delta), 0)
            FROM products p
            LEFT JOIN stock_movements m ON m.product_id = p.id
            GROUP BY p.id
            ORDER BY p.id
            """
        )
        rows = cur.fetchall()
        conn.close()
        return [(int(r[0]), int(r[1]), int(r[2])) for r in rows]

    # ---------- Pagination ----------
    def fetch_page(
        self,
        collection: str,
        sort_key: str,
        descending: bool,
        limit: int,
        boundary: Optional[tuple[object, int]] = None,
        forward: bool = True,
        filters: Optional[Mapping[str, object]] = None,
        inclusive: bool = False,
    ) -> list:
        """Keyset read of ``limit`` rows next to ``boundary`` (value, id).

        With ``inclusive`` the boundary row itself is part of the result when it
        still exists.

        Rows come back in query order: display order when ``forward``, reversed
        display order otherwise.
        """
        source = PAGE_SOURCES.get(collection)
        if source is None:
            raise ValidationError(f"Unknown collection: {collection}")
        if sort_key not in source.sort_keys:
            raise ValidationError(f"Cannot sort {collection} by {sort_key}.")

        where: list[str] = [source.base_where] if source.base_where else []
        params: list[object] = []
        for key, value in (filters or {}).items():
            if key not in source.filters:
                raise ValidationError(f"Cannot filter {collection} by {key}.")
            if value is None:
                where.append(f"{key} IS NULL")
            else:
                where.append(f"{key} = ?")
                params.append(value)

        # reading backwards flips both the comparison and the ordering
        ascending = (not descending) == forward
        if boundary is not None:
            value, row_id = boundary
            op = ">" if ascending else "<"
            id_op = op + "=" if inclusive else op
            where.append(f"({sort_key} {op} ? OR ({sort_key} = ? AND id {id_op} ?))")
            params.extend([value, value, int(row_id)])

        direction = "ASC" if ascending else "DESC"
        clause = f"WHERE {' AND '.join(where)}" if where else ""
        sql = (
            f"SELECT {source.columns} FROM {source.table} {clause} "
            f"ORDER BY {sort_key} {direction}, id {direction} LIMIT ?"
        )
        params.append(int(limit))

        conn = self._conn()
        cur = conn.cursor()
        cur.execute(sql, tuple(params))
        rows: Sequence = cur.fetchall()
        if collection == "orders":
            out = orders_from_rows(cur, rows)
        else:
            out = [product_from_row(r) for r in rows]
        conn.close()
        return out
