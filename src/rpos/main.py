from __future__ import annotations

import logging

from rpos.application.container import AppContainer, build_container
from rpos.config import get_app_paths, load_settings
from rpos.logging_config import setup_logging

log = logging.getLogger(__name__)


def bootstrap(app_name: str = "RetailPOS") -> AppContainer:
    paths = get_app_paths(app_name)
    setup_logging(paths.logs_dir, level=logging.INFO)
    settings = load_settings()

    container = build_container(paths.db_path, settings)
    log.info("store_ready db=%s tax_rate=%s", paths.db_path, settings.tax_rate)
    return container


def main() -> int:
    """Open the store and check stock against the movement journal."""
    container = bootstrap()
    mismatches = container.ledger.verify()
    if mismatches:
        log.error("startup_check_failed mismatched_products=%s", len(mismatches))
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
