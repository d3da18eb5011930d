from __future__ import annotations

import logging
from typing import Callable, Mapping, Optional

from rpos.domain.errors import InsufficientStockError, NotFoundError, ValidationError
from rpos.domain.models import StockDiscrepancy, StockMovement
from rpos.repositories.sqlite_repo import now_iso
from rpos.repositories.unit_of_work import UnitOfWork

log = logging.getLogger("rpos.stock")

REFERENCE_TYPES = ("opening", "order_create", "order_edit", "manual")


class StockLedger:
    """Sole writer of ``Product.quantity``.

    A batch of signed deltas is checked as a whole before anything is written:
    one product going negative rejects the entire batch.
    """

    def __init__(self, repo):
        self.repo = repo
        self._listeners: list[Callable[[], None]] = []

    def add_commit_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def notify_committed(self) -> None:
        for listener in self._listeners:
            listener()

    def apply_deltas(
        self,
        deltas: Mapping[int, int],
        uow: Optional[UnitOfWork] = None,
        *,
        reference_type: str = "manual",
        reference_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> list[int]:
        """Apply ``deltas`` (product_id -> signed qty) all-or-nothing.

        With ``uow`` the writes join the caller's transaction and commit with
        it; without one the batch runs in its own transaction. Returns the ids
        of every referenced product, zero deltas included.
        """
        if reference_type not in REFERENCE_TYPES:
            raise ValidationError(f"Unknown stock reference type: {reference_type}")
        normalized = self._normalize(deltas)

        if uow is None:
            applied = self.repo.run_in_transaction(
                lambda tx: self._apply(tx, normalized, reference_type, reference_id, notes)
            )
            self.notify_committed()
            return applied
        return self._apply(uow, normalized, reference_type, reference_id, notes)

    @staticmethod
    def _normalize(deltas: Mapping[int, int]) -> dict[int, int]:
        out: dict[int, int] = {}
        for pid, delta in deltas.items():
            if isinstance(delta, bool) or not isinstance(delta, int):
                raise ValidationError(f"Stock delta for product {pid} must be an integer.")
            out[int(pid)] = out.get(int(pid), 0) + delta
        return out

    def _apply(
        self,
        uow: UnitOfWork,
        deltas: dict[int, int],
        reference_type: str,
        reference_id: Optional[int],
        notes: Optional[str],
    ) -> list[int]:
        products = uow.products_for_update(deltas.keys())

        # validate the whole batch before the first write
        new_quantities: dict[int, int] = {}
        for pid in sorted(deltas):
            delta = deltas[pid]
            prod = products.get(pid)
            if prod is None:
                raise NotFoundError(f"Product not found: {pid}")
            if delta < 0 and not prod.active:
                raise NotFoundError(f"Product not active: {prod.name}")
            new_qty = int(prod.quantity) + delta
            if new_qty < 0:
                raise InsufficientStockError(
                    product_id=pid,
                    requested=-delta,
                    available=int(prod.quantity),
                    product_name=prod.name,
                )
            new_quantities[pid] = new_qty

        ts = now_iso()
        for pid, new_qty in new_quantities.items():
            delta = deltas[pid]
            if delta == 0:
                continue
            uow.set_product_quantity(pid, new_qty, ts)
            uow.record_movement(ts, pid, delta, new_qty, reference_type, reference_id, notes)
            log.info(
                "stock_applied product_id=%s delta=%s quantity_after=%s ref=%s:%s",
                pid, delta, new_qty, reference_type, reference_id,
            )
        return sorted(new_quantities)

    def movements_for_product(self, product_id: int) -> list[StockMovement]:
        return self.repo.movements_for_product(int(product_id))

    def verify(self) -> list[StockDiscrepancy]:
        """Products whose quantity no longer matches the sum of their movements."""
        out = [
            StockDiscrepancy(product_id=pid, quantity=qty, journal_total=journal)
            for pid, qty, journal in self.repo.stock_vs_journal()
            if qty != journal
        ]
        for d in out:
            log.error("stock_journal_mismatch product_id=%s quantity=%s journal=%s", d.product_id, d.quantity, d.journal_total)
        return out
