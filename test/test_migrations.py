import sqlite3
from pathlib import Path

import pytest

from rpos.repositories.sqlite_repo import SqliteRepository


def _schema_version(repo: SqliteRepository) -> int:
    conn = repo._conn()
    cur = conn.cursor()
    cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
    version = int(cur.fetchone()[0])
    conn.close()
    return version


def test_migrations_are_applied_once(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "m.db")
    repo.init_db()
    repo.init_db()

    assert _schema_version(repo) == 2
    conn = repo._conn()
    tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    conn.close()
    assert {"categories", "customers", "products", "orders", "order_items", "stock_movements"} <= tables


def test_constraints_reject_negative_stock(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "c.db")
    repo.init_db()

    conn = repo._conn()
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "INSERT INTO products (name, price, quantity, serial_number, created_at, updated_at) "
            "VALUES ('x', 1.0, -1, 'SN', 'now', 'now')"
        )
    conn.close()


def test_migration_failure_restores_db(tmp_path: Path):
    class BrokenMigrationRepo(SqliteRepository):
        def _migration_v2_page_indexes(self, cur):
            raise RuntimeError("forced migration failure")

    db = tmp_path / "broken.db"
    repo = SqliteRepository(db)
    repo.init_db()

    conn = repo._conn()
    conn.execute("DELETE FROM schema_migrations WHERE version = 2")
    conn.commit()
    conn.close()
    before = _schema_version(repo)

    broken = BrokenMigrationRepo(db)

    with pytest.raises(RuntimeError, match="Original database restored"):
        broken.run_migrations()

    assert _schema_version(repo) == before == 1
