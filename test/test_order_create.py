import re
from datetime import datetime
from pathlib import Path

import pytest

from conftest import add_product, build, cart, line, qty

from rpos.domain.errors import (
    EmptyOrderError,
    InsufficientStockError,
    NotFoundError,
    OrderNumberCollisionError,
    ValidationError,
)
from rpos.domain.models import WALK_IN_CUSTOMER_ID, Cart
from rpos.repositories.sqlite_repo import SqliteRepository
from rpos.repositories.unit_of_work import SqliteUnitOfWork
from rpos.services.order_service import OrderService
from rpos.services.stock_ledger import StockLedger


def test_create_order_decrements_stock_and_computes_totals(tmp_path: Path):
    c = build(tmp_path)
    p = add_product(c, "Keyboard", 5, price=100.0)

    order_id = c.orders.create_order(cart(line(p, 3)))

    assert qty(c, p) == 2
    order = c.orders.get_order(order_id)
    assert order.subtotal == pytest.approx(300.0)
    assert order.tax_amount == pytest.approx(54.0)
    assert order.total_amount == pytest.approx(354.0)
    assert [(it.product_id, it.bill_quantity, it.price) for it in order.items] == [(p.id, 3, 100.0)]
    assert re.fullmatch(r"ORD-\d{8}-\d{9}", order.order_number)
    assert order.customer_id == WALK_IN_CUSTOMER_ID
    assert order.customer_name == "Walk-in Customer"


def test_create_order_without_stock_raises_and_creates_nothing(tmp_path: Path):
    c = build(tmp_path)
    p = add_product(c, "Keyboard", 0)

    with pytest.raises(InsufficientStockError) as exc_info:
        c.orders.create_order(cart(line(p, 1)))

    assert (exc_info.value.product_id, exc_info.value.requested, exc_info.value.available) == (p.id, 1, 0)
    assert qty(c, p) == 0
    assert c.orders.list_orders_between() == []


def test_failure_on_one_line_leaves_every_product_untouched(tmp_path: Path):
    c = build(tmp_path)
    a = add_product(c, "Keyboard", 5)
    b = add_product(c, "Monitor", 0)

    with pytest.raises(InsufficientStockError):
        c.orders.create_order(cart(line(a, 2), line(b, 1)))

    assert qty(c, a) == 5
    assert qty(c, b) == 0
    assert c.orders.list_orders_between() == []


def test_repeated_product_lines_are_checked_together(tmp_path: Path):
    c = build(tmp_path)
    p = add_product(c, "Keyboard", 5)

    with pytest.raises(InsufficientStockError) as exc_info:
        c.orders.create_order(cart(line(p, 3), line(p, 3)))

    assert exc_info.value.requested == 6
    assert qty(c, p) == 5


def test_empty_cart_is_rejected(tmp_path: Path):
    c = build(tmp_path)

    with pytest.raises(EmptyOrderError):
        c.orders.create_order(Cart(lines=()))


@pytest.mark.parametrize("bad_qty", [0, -1, 2.5])
def test_create_rejects_non_positive_or_fractional_quantity(tmp_path: Path, bad_qty):
    c = build(tmp_path)
    p = add_product(c, "Keyboard", 5)

    with pytest.raises(ValidationError):
        c.orders.create_order(cart(line(p, bad_qty)))
    assert qty(c, p) == 5


def test_create_rejects_unknown_product(tmp_path: Path):
    c = build(tmp_path)
    p = add_product(c, "Keyboard", 5)
    ghost = p.__class__(id=9999, name="Ghost", price=1.0, quantity=1)

    with pytest.raises(NotFoundError):
        c.orders.create_order(cart(line(p, 1), line(ghost, 1)))
    assert qty(c, p) == 5


def test_order_number_collision_is_fatal(tmp_path: Path):
    c = build(tmp_path)
    p = add_product(c, "Keyboard", 5)
    frozen = datetime(2024, 6, 1, 12, 30, 45, 123000)
    c.orders.clock = lambda: frozen

    order_id = c.orders.create_order(cart(line(p, 1)))
    assert c.orders.get_order(order_id).order_number == "ORD-20240601-123045123"

    with pytest.raises(OrderNumberCollisionError):
        c.orders.create_order(cart(line(p, 1)))
    assert qty(c, p) == 4


def test_line_price_is_a_snapshot(tmp_path: Path):
    c = build(tmp_path)
    p = add_product(c, "Keyboard", 5, price=100.0)
    order_id = c.orders.create_order(cart(line(p, 1)))

    c.inventory.update_product(p.id, "Keyboard", 150.0, serial_number=p.serial_number)

    order = c.orders.get_order(order_id)
    assert order.items[0].price == 100.0
    assert order.subtotal == pytest.approx(100.0)


def test_cached_catalog_is_refreshed_after_an_order(tmp_path: Path):
    c = build(tmp_path)
    p = add_product(c, "Keyboard", 5)
    assert c.inventory.get_products()[0].quantity == 5

    c.orders.create_order(cart(line(p, 2)))

    assert c.inventory.get_products()[0].quantity == 3


def test_catalog_read_overlapping_an_order_is_not_kept(tmp_path: Path):
    c = build(tmp_path)
    p = add_product(c, "Keyboard", 5)
    list_products = c.repo.list_products

    def list_then_sell(include_inactive: bool = False):
        rows = list_products(include_inactive)
        c.repo.list_products = list_products
        c.orders.create_order(cart(line(p, 2)))
        return rows

    c.repo.list_products = list_then_sell
    assert c.inventory.get_products()[0].quantity == 5

    assert qty(c, p) == 3
    assert c.inventory.get_products()[0].quantity == 3


class FailingUnitOfWork(SqliteUnitOfWork):
    def insert_order_items(self, order_id, items):
        raise RuntimeError("boom")


class FailingRepo(SqliteRepository):
    def unit_of_work(self):
        return FailingUnitOfWork(self)


def test_create_rolls_back_stock_when_order_write_fails(tmp_path: Path):
    db = tmp_path / "t.db"
    c = build(tmp_path, "t.db")
    p = add_product(c, "Keyboard", 5)

    repo = FailingRepo(db)
    orders = OrderService(repo, StockLedger(repo))

    with pytest.raises(RuntimeError, match="boom"):
        orders.create_order(cart(line(p, 3)))

    assert qty(c, p) == 5
    assert c.ledger.movements_for_product(p.id)[-1].reference_type == "opening"
    assert repo.list_orders_between(None, None) == []


def test_create_rejects_non_finite_price(tmp_path: Path):
    c = build(tmp_path)
    p = add_product(c, "Keyboard", 5)

    with pytest.raises(ValidationError):
        c.orders.create_order(cart(line(p, 1, price=float("nan"))))
    with pytest.raises(ValidationError):
        c.orders.create_order(cart(line(p, 1, price=float("inf"))))
    assert qty(c, p) == 5
    assert c.orders.list_orders_between() == []
