from pathlib import Path

import pytest

from conftest import add_product, build, qty

from rpos.domain.errors import InsufficientStockError, NotFoundError, ValidationError


def test_batch_fails_as_a_whole_when_one_product_would_go_negative(tmp_path: Path):
    c = build(tmp_path)
    a = add_product(c, "Cable", 5)
    b = add_product(c, "Mouse", 1)

    with pytest.raises(InsufficientStockError) as exc_info:
        c.ledger.apply_deltas({a.id: -2, b.id: -3})

    err = exc_info.value
    assert err.product_id == b.id
    assert err.requested == 3
    assert err.available == 1
    assert qty(c, a) == 5
    assert qty(c, b) == 1
    assert [m.reference_type for m in c.ledger.movements_for_product(a.id)] == ["opening"]


def test_zero_delta_is_reported_but_writes_nothing(tmp_path: Path):
    c = build(tmp_path)
    a = add_product(c, "Cable", 5)
    b = add_product(c, "Mouse", 4)

    applied = c.ledger.apply_deltas({b.id: -1, a.id: 0})

    assert applied == sorted([a.id, b.id])
    assert qty(c, a) == 5
    assert qty(c, b) == 3
    assert len(c.ledger.movements_for_product(a.id)) == 1
    last = c.ledger.movements_for_product(b.id)[-1]
    assert last.qty_delta == -1
    assert last.quantity_after == 3
    assert last.reference_type == "manual"


def test_unknown_product_is_not_found(tmp_path: Path):
    c = build(tmp_path)
    a = add_product(c, "Cable", 5)

    with pytest.raises(NotFoundError):
        c.ledger.apply_deltas({a.id: -1, 9999: 1})
    assert qty(c, a) == 5


def test_inactive_product_takes_releases_but_cannot_be_consumed(tmp_path: Path):
    c = build(tmp_path)
    a = add_product(c, "Cable", 5)
    c.inventory.deactivate_product(a.id)

    with pytest.raises(NotFoundError):
        c.ledger.apply_deltas({a.id: -1})

    c.ledger.apply_deltas({a.id: 2})
    assert qty(c, a) == 7


def test_non_integer_delta_is_rejected(tmp_path: Path):
    c = build(tmp_path)
    a = add_product(c, "Cable", 5)

    with pytest.raises(ValidationError):
        c.ledger.apply_deltas({a.id: 1.5})
    with pytest.raises(ValidationError):
        c.ledger.apply_deltas({a.id: -1}, reference_type="gift")
    assert qty(c, a) == 5


def test_manual_adjustment_goes_through_ledger_and_keeps_journal_in_sync(tmp_path: Path):
    c = build(tmp_path)
    a = add_product(c, "Cable", 5)

    c.inventory.adjust_stock(a.id, 10, notes="restock")
    c.inventory.adjust_stock(a.id, -4, notes="damaged")

    assert qty(c, a) == 11
    movements = c.ledger.movements_for_product(a.id)
    assert [m.qty_delta for m in movements] == [5, 10, -4]
    assert movements[1].notes == "restock"
    assert c.ledger.verify() == []


def test_verify_flags_quantity_written_outside_the_ledger(tmp_path: Path):
    c = build(tmp_path)
    a = add_product(c, "Cable", 5)

    conn = c.repo._conn()
    conn.execute("UPDATE products SET quantity=9 WHERE id=?", (a.id,))
    conn.commit()
    conn.close()

    mismatches = c.ledger.verify()
    assert len(mismatches) == 1
    assert mismatches[0].product_id == a.id
    assert mismatches[0].quantity == 9
    assert mismatches[0].journal_total == 5
