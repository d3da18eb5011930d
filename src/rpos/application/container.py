from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from rpos.config import Settings
from rpos.repositories.sqlite_repo import SqliteRepository
from rpos.services.customer_service import CustomerService
from rpos.services.inventory_service import InventoryService
from rpos.services.order_service import OrderService
from rpos.services.pagination_service import PaginationService
from rpos.services.reporting_service import ReportingService
from rpos.services.stock_ledger import StockLedger


@dataclass(frozen=True)
class AppContainer:
    settings: Settings
    repo: SqliteRepository
    ledger: StockLedger
    inventory: InventoryService
    customers: CustomerService
    orders: OrderService
    pagination: PaginationService
    reporting: ReportingService


def build_container(db_path: Path | str, settings: Settings | None = None) -> AppContainer:
    settings = settings or Settings()
    repo = SqliteRepository(
        db_path,
        busy_timeout=settings.busy_timeout_seconds,
        retry_attempts=settings.retry_attempts,
        retry_backoff=settings.retry_backoff_seconds,
    )
    repo.init_db()

    ledger = StockLedger(repo)
    inventory = InventoryService(repo, ledger)
    ledger.add_commit_listener(inventory.invalidate_cache)
    customers = CustomerService(repo)
    orders = OrderService(repo, ledger, tax_rate=settings.tax_rate)
    pagination = PaginationService(
        repo,
        default_page_size=settings.default_page_size,
        max_page_size=settings.max_page_size,
    )
    reporting = ReportingService(repo)

    return AppContainer(
        settings=settings,
        repo=repo,
        ledger=ledger,
        inventory=inventory,
        customers=customers,
        orders=orders,
        pagination=pagination,
        reporting=reporting,
    )
