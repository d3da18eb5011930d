from pathlib import Path

import pytest
from openpyxl import load_workbook

from conftest import add_product, build, line

from rpos.services.reporting_service import ORDER_EXPORT_HEADERS


def test_export_writes_one_row_per_order_line(tmp_path: Path):
    c = build(tmp_path)
    p = add_product(c, "Phone", 5, price=200.0)
    q = add_product(c, "Case", 5, price=15.0, serial_number=None, barcode="779000111")
    customer_id = c.customers.add_customer("Ana Perez", "555-0101", address="Main St 1")
    customer = c.customers.get_customer(customer_id)

    first = c.orders.create_order(c.customers.cart_for(customer, [line(p, 1), line(q, 2)]))
    second = c.orders.create_order(c.customers.cart_for(None, [line(q, 1)]))

    out = tmp_path / "orders.xlsx"
    rows = c.reporting.export_orders_excel(str(out))

    assert rows == 3
    ws = load_workbook(out)["Orders"]
    assert [cell.value for cell in ws[1]] == ORDER_EXPORT_HEADERS
    assert ws.max_row == 4

    newest = c.orders.get_order(second)
    assert ws["A2"].value == newest.order_number
    assert ws["C2"].value == "Walk-in Customer"
    assert ws["E2"].value == "N/A"
    assert ws["G2"].value == "779000111"

    older = c.orders.get_order(first)
    assert ws["A3"].value == older.order_number
    assert ws["C3"].value == "Ana Perez"
    assert ws["E3"].value == "Main St 1"
    assert ws["F3"].value == "Phone"
    assert ws["J4"].value == pytest.approx(30.0)
    assert ws["M3"].value == pytest.approx(230.0 * 1.18)
    assert ws["H3"].number_format == "#,##0.00"
    assert "OrdersDetail" in ws.tables


def test_export_with_no_orders_writes_only_headers(tmp_path: Path):
    c = build(tmp_path)
    out = tmp_path / "empty.xlsx"

    assert c.reporting.export_orders_excel(str(out)) == 0

    ws = load_workbook(out)["Orders"]
    assert ws.max_row == 1
    assert not ws.tables


def test_export_respects_date_range(tmp_path: Path):
    c = build(tmp_path)
    p = add_product(c, "Phone", 5)
    c.orders.create_order(c.customers.cart_for(None, [line(p, 1)]))
    order = c.orders.get_order(c.orders.create_order(c.customers.cart_for(None, [line(p, 1)])))

    out = tmp_path / "range.xlsx"
    rows = c.reporting.export_orders_excel(str(out), start_iso=order.order_date)

    assert rows == 1
    assert load_workbook(out)["Orders"]["A2"].value == order.order_number
