from __future__ import annotations

import logging
import math
from collections import Counter
from datetime import datetime
from typing import Callable, Iterable, Optional

from rpos.domain.errors import (
    AppError,
    EmptyOrderError,
    NotFoundError,
    OrderNumberCollisionError,
    ValidationError,
)
from rpos.domain.models import Cart, Order, OrderLine, compute_totals
from rpos.repositories.unit_of_work import UnitOfWork

log = logging.getLogger("rpos.orders")


def format_order_number(moment: datetime) -> str:
    # ORD-YYYYMMDD-HHMMSSmmm
    return f"ORD-{moment.strftime('%Y%m%d-%H%M%S')}{moment.microsecond // 1000:03d}"


def _validate_line(line: OrderLine, allow_zero: bool) -> None:
    qty = line.bill_quantity
    if isinstance(qty, bool) or not isinstance(qty, int):
        raise ValidationError(f"Quantity for {line.name} must be a whole number.")
    if qty < 0 or (qty == 0 and not allow_zero):
        raise ValidationError(f"Quantity for {line.name} must be >= 1.")
    price = float(line.price)
    if not math.isfinite(price) or price < 0:
        raise ValidationError(f"Price for {line.name} must be a number >= 0.")


def quantities_by_product(lines: Iterable[OrderLine]) -> Counter[int]:
    totals: Counter[int] = Counter()
    for line in lines:
        if line.bill_quantity:
            totals[int(line.product_id)] += int(line.bill_quantity)
    return totals


def reconcile(original: Iterable[OrderLine], revised: Iterable[OrderLine]) -> dict[int, int]:
    """Stock delta per product for moving an order from ``original`` to ``revised``.

    Positive values release stock, negative values reserve more. Every product
    on either side gets an entry, unchanged ones included with 0.
    """
    before = quantities_by_product(original)
    after = quantities_by_product(revised)
    return {pid: before.get(pid, 0) - after.get(pid, 0) for pid in sorted(set(before) | set(after))}


class OrderService:
    def __init__(
        self,
        repo,
        ledger,
        tax_rate: float = 0.18,
        clock: Callable[[], datetime] | None = None,
    ):
        self.repo = repo
        self.ledger = ledger
        self.tax_rate = float(tax_rate)
        self.clock = clock or datetime.now

    def create_order(self, cart: Cart) -> int:
        lines = tuple(cart.lines)
        if not lines:
            raise EmptyOrderError("Cannot create an empty order. Add items first.")
        for line in lines:
            _validate_line(line, allow_zero=False)

        totals = compute_totals(lines, self.tax_rate)
        deltas = {pid: -qty for pid, qty in quantities_by_product(lines).items()}

        def work(uow: UnitOfWork) -> tuple[int, str]:
            moment = self.clock()
            order_number = format_order_number(moment)
            if uow.order_number_exists(order_number):
                raise OrderNumberCollisionError(f"Order number already exists: {order_number}")
            order_date = moment.isoformat(sep=" ", timespec="milliseconds")
            order_id = uow.insert_order(order_number, cart, totals, order_date)
            self.ledger.apply_deltas(deltas, uow, reference_type="order_create", reference_id=order_id)
            uow.insert_order_items(order_id, lines)
            return order_id, order_number

        try:
            order_id, order_number = self.repo.run_in_transaction(work)
        except AppError as e:
            log.warning("order_create_failed items=%s error=%s: %s", len(lines), type(e).__name__, e)
            raise
        self.ledger.notify_committed()
        log.info(
            "order_created order_id=%s number=%s items=%s total=%.2f customer=%s",
            order_id, order_number, len(lines), totals.total_amount, cart.customer_id,
        )
        return order_id

    def edit_order(
        self,
        order_id: int,
        revised_items: Iterable[OrderLine],
        original_order: Optional[Order] = None,
    ) -> None:
        """Replace an order's lines and move the net stock difference.

        Lines with ``bill_quantity == 0`` mark removals and are dropped. The
        reconciliation base is always the order as stored at the time of the
        write; ``original_order`` only has to agree on the id.
        """
        order_id = int(order_id)
        if original_order is not None and int(original_order.id) != order_id:
            raise ValidationError("Original order does not match the order being edited.")

        revised = tuple(revised_items)
        for line in revised:
            _validate_line(line, allow_zero=True)
        kept = tuple(line for line in revised if line.bill_quantity > 0)
        if not kept:
            raise EmptyOrderError("An order must keep at least one item. Cancelling orders is not supported.")

        totals = compute_totals(kept, self.tax_rate)

        def work(uow: UnitOfWork) -> dict[int, int]:
            stored = uow.get_order(order_id)
            if stored is None:
                raise NotFoundError(f"Order not found: {order_id}")
            if original_order is not None and original_order.updated_at != stored.updated_at:
                log.warning(
                    "order_edit_stale_base order_id=%s supplied=%s stored=%s",
                    order_id, original_order.updated_at, stored.updated_at,
                )
            deltas = reconcile(stored.items, kept)
            self.ledger.apply_deltas(deltas, uow, reference_type="order_edit", reference_id=order_id)
            uow.replace_order_items(order_id, kept, totals, self.clock().isoformat(sep=" ", timespec="milliseconds"))
            return deltas

        try:
            deltas = self.repo.run_in_transaction(work)
        except AppError as e:
            log.warning("order_edit_failed order_id=%s error=%s: %s", order_id, type(e).__name__, e)
            raise
        self.ledger.notify_committed()
        log.info(
            "order_edited order_id=%s items=%s total=%.2f deltas=%s",
            order_id, len(kept), totals.total_amount, {k: v for k, v in deltas.items() if v},
        )

    def get_order(self, order_id: int) -> Order:
        order = self.repo.get_order(int(order_id))
        if not order:
            raise NotFoundError("Order not found.")
        return order

    def list_orders_between(self, start_iso: Optional[str] = None, end_iso: Optional[str] = None) -> list[Order]:
        return self.repo.list_orders_between(start_iso, end_iso)
