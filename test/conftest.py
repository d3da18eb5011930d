import sys
import threading
from datetime import datetime, timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


class TickingClock:
    """Advances one millisecond per call so order numbers never collide in tests."""

    def __init__(self, start: datetime = datetime(2024, 5, 1, 9, 0, 0)):
        self._next = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            now = self._next
            self._next = now + timedelta(milliseconds=1)
            return now


def build(tmp_path: Path, name: str = "pos.db", **settings):
    from rpos.application.container import build_container
    from rpos.config import Settings

    container = build_container(tmp_path / name, Settings(**settings))
    container.orders.clock = TickingClock()
    return container


def add_product(container, name: str, quantity: int, price: float = 10.0, **kwargs):
    kwargs.setdefault("serial_number", f"SN-{name}")
    pid = container.inventory.add_product(name, price, quantity, **kwargs)
    return container.inventory.get_product(pid)


def qty(container, product) -> int:
    return container.repo.get_product_by_id(product.id, include_inactive=True).quantity


def line(product, qty: int, price: float | None = None):
    from rpos.domain.models import OrderLine

    return OrderLine(
        product_id=product.id,
        name=product.name,
        price=float(product.price if price is None else price),
        bill_quantity=qty,
        serial_number=product.serial_number,
        barcode=product.barcode,
    )


def cart(*lines):
    from rpos.domain.models import Cart

    return Cart(lines=tuple(lines))
