from __future__ import annotations

import logging
import math
import threading
from typing import Optional

from rpos.domain.errors import NotFoundError, ValidationError
from rpos.domain.models import Category, OrderLine, Product
from rpos.repositories.sqlite_repo import now_iso

log = logging.getLogger(__name__)


def _clean(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


class InventoryService:
    def __init__(self, repo, ledger):
        self.repo = repo
        self.ledger = ledger
        self._catalog: Optional[list[Product]] = None
        self._generation = 0
        self._lock = threading.Lock()

    def invalidate_cache(self) -> None:
        with self._lock:
            self._generation += 1
            self._catalog = None

    # ---------- Read accessors ----------
    def get_products(self) -> list[Product]:
        with self._lock:
            cached = self._catalog
            generation = self._generation
        if cached is not None:
            return list(cached)

        products = self.repo.list_products()
        with self._lock:
            # rows read across a commit are returned but not cached
            if self._generation == generation:
                self._catalog = products
        return list(products)

    def get_product(self, product_id: int) -> Product:
        p = self.repo.get_product_by_id(int(product_id))
        if not p:
            raise NotFoundError("Product not found.")
        return p

    def find_product_by_code(self, serial_number: Optional[str] = None, barcode: Optional[str] = None) -> Product:
        serial_number = _clean(serial_number)
        barcode = _clean(barcode)
        if not serial_number and not barcode:
            raise ValidationError("Serial number or barcode is required.")
        p = None
        if serial_number:
            p = self.repo.find_product_by_serial(serial_number)
        if p is None and barcode:
            p = self.repo.find_product_by_barcode(barcode)
        if p is None:
            raise NotFoundError("No product matches that serial number or barcode.")
        return p

    def build_order_line(self, product: Product, bill_quantity: int) -> OrderLine:
        if bill_quantity <= 0:
            raise ValidationError("Qty must be >= 1.")
        if bill_quantity > int(product.quantity):
            raise ValidationError(f"Cannot bill {bill_quantity} of {product.name}. Available: {product.quantity}")
        return OrderLine(
            product_id=product.id,
            name=product.name,
            price=float(product.price),
            bill_quantity=int(bill_quantity),
            serial_number=product.serial_number,
            barcode=product.barcode,
        )

    # ---------- Products ----------
    def _validate_product(self, name: str, price: float, serial_number: Optional[str], barcode: Optional[str]) -> None:
        if not name:
            raise ValidationError("Name is required.")
        if not serial_number and not barcode:
            raise ValidationError("Serial number or barcode is required.")
        if not math.isfinite(float(price)) or price < 0:
            raise ValidationError("Price must be a number >= 0.")

    def _category_name(self, category_id: Optional[int]) -> Optional[str]:
        if category_id is None:
            return None
        category = self.repo.get_category(int(category_id))
        if not category:
            raise NotFoundError("Category not found.")
        return category.name

    def add_product(
        self,
        name: str,
        price: float,
        quantity: int,
        category_id: Optional[int] = None,
        serial_number: Optional[str] = None,
        barcode: Optional[str] = None,
    ) -> int:
        name = (name or "").strip()
        serial_number = _clean(serial_number)
        barcode = _clean(barcode)
        self._validate_product(name, price, serial_number, barcode)
        if quantity < 0:
            raise ValidationError("Stock values must be >= 0.")
        category_name = self._category_name(category_id)

        def work(uow) -> int:
            pid = uow.insert_product(name, float(price), 0, category_id, category_name, serial_number, barcode, now_iso())
            # the opening quantity goes through the ledger like any other stock change
            self.ledger.apply_deltas({pid: int(quantity)}, uow, reference_type="opening", reference_id=pid)
            return pid

        pid = self.repo.run_in_transaction(work)
        self.invalidate_cache()
        log.info("product_added product_id=%s quantity=%s", pid, quantity)
        return pid

    def update_product(
        self,
        product_id: int,
        name: str,
        price: float,
        category_id: Optional[int] = None,
        serial_number: Optional[str] = None,
        barcode: Optional[str] = None,
    ) -> None:
        name = (name or "").strip()
        serial_number = _clean(serial_number)
        barcode = _clean(barcode)
        self._validate_product(name, price, serial_number, barcode)
        category_name = self._category_name(category_id)

        updated = self.repo.update_product_details(
            int(product_id), name, float(price), category_id, category_name, serial_number, barcode
        )
        if not updated:
            raise NotFoundError("Product not found.")
        self.invalidate_cache()

    def adjust_stock(self, product_id: int, delta: int, notes: Optional[str] = None) -> None:
        if delta == 0:
            raise ValidationError("Adjustment must not be zero.")
        self.ledger.apply_deltas({int(product_id): delta}, reference_type="manual", notes=notes)

    def deactivate_product(self, product_id: int) -> None:
        removed = self.repo.deactivate_product(int(product_id))
        if not removed:
            raise NotFoundError("Product not found.")
        self.invalidate_cache()

    # ---------- Categories ----------
    def list_categories(self) -> list[Category]:
        return self.repo.list_categories()

    def add_category(self, name: str) -> int:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Category name is required.")
        if self.repo.get_category_by_name(name):
            raise ValidationError(f"Category already exists: {name}")
        return self.repo.add_category(name)

    def find_or_create_category(self, name: str) -> Category:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Category name is required.")
        existing = self.repo.get_category_by_name(name)
        if existing:
            return existing
        return Category(id=self.repo.add_category(name), name=name)

    def rename_category(self, category_id: int, name: str) -> None:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Category name is required.")
        other = self.repo.get_category_by_name(name)
        if other and other.id != int(category_id):
            raise ValidationError(f"Category already exists: {name}")
        if not self.repo.rename_category(int(category_id), name):
            raise NotFoundError("Category not found.")

    def delete_category(self, category_id: int) -> None:
        """Delete a category no active product uses.

        Deactivated products that still point at it are unlinked.
        """
        category_id = int(category_id)

        def work(uow) -> bool:
            in_use = uow.active_products_in_category(category_id)
            if in_use:
                raise ValidationError(f"Category is used by {in_use} product(s). Move them first.")
            return uow.delete_category(category_id)

        if not self.repo.run_in_transaction(work):
            raise NotFoundError("Category not found.")
        log.info("category_deleted category_id=%s", category_id)
