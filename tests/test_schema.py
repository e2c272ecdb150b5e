from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy.exc import IntegrityError

from database import SQLiteAdapter
from schema import ensure_schema, migrate_from_sqlite

LEGACY_TABLE = """
CREATE TABLE transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT NOT NULL CHECK(type IN ('income','expenditure')),
    name TEXT NOT NULL,
    date TEXT NOT NULL,
    amount REAL NOT NULL
);
"""


def _index_exists(db: SQLiteAdapter) -> bool:
    rows = db.query_all(
        "SELECT name FROM sqlite_master WHERE type = 'index' AND name = 'transactions_unique_idx'"
    )
    return len(rows) == 1


def test_ensure_schema_is_idempotent(adapter: SQLiteAdapter):
    report = ensure_schema(adapter)
    assert report.unique_index is True
    assert report.added_columns == ()
    assert {"created_by", "updated_by"} <= adapter.column_names("transactions")
    assert _index_exists(adapter)


def test_legacy_table_with_duplicates_is_deduplicated(tmp_path: Path):
    db = SQLiteAdapter(tmp_path / "legacy.db")
    try:
        db.run_script(LEGACY_TABLE)
        for name, amount in [("Rent", 500), ("Rent", 500), ("Food", 20), ("Rent", 500), ("Food", 20), ("Gym", 30)]:
            db.execute(
                "INSERT INTO transactions (type, name, date, amount) "
                "VALUES ('expenditure', :name, '2024-01-02', :amount)",
                {"name": name, "amount": amount},
            )

        report = ensure_schema(db)

        assert report.unique_index is True
        assert report.deduplicated == 3
        assert set(report.added_columns) == {"created_by", "updated_by"}
        assert _index_exists(db)
        rows = db.query_all("SELECT id, name FROM transactions ORDER BY id")
        assert rows == [{"id": 1, "name": "Rent"}, {"id": 3, "name": "Food"}, {"id": 6, "name": "Gym"}]

        with pytest.raises(IntegrityError):
            db.execute(
                "INSERT INTO transactions (type, name, date, amount) "
                "VALUES ('expenditure', 'Rent', '2024-01-02', 500)"
            )
    finally:
        db.close()


def test_settings_table_created(adapter: SQLiteAdapter):
    adapter.execute(adapter.upsert_setting_sql(), {"key": "k", "value": "1"})
    adapter.execute(adapter.upsert_setting_sql(), {"key": "k", "value": "2"})
    assert adapter.query_all("SELECT key, value FROM settings") == [{"key": "k", "value": "2"}]


def test_migrate_from_sqlite_copies_into_empty_target(tmp_path: Path, adapter: SQLiteAdapter):
    source = SQLiteAdapter(tmp_path / "old.db")
    try:
        ensure_schema(source)
        source.execute(
            "INSERT INTO transactions (type, name, date, amount, created_by) "
            "VALUES ('income', 'Paycheck', '2024-01-01', 1000, 'admin')"
        )
        source.execute(
            "INSERT INTO transactions (type, name, date, amount) "
            "VALUES ('expenditure', 'Rent', '2024-01-02', 500)"
        )
    finally:
        source.close()

    assert migrate_from_sqlite(tmp_path / "old.db", adapter) == 2
    rows = adapter.query_all("SELECT type, name, amount, created_by FROM transactions ORDER BY id")
    assert rows == [
        {"type": "income", "name": "Paycheck", "amount": 1000.0, "created_by": "admin"},
        {"type": "expenditure", "name": "Rent", "amount": 500.0, "created_by": None},
    ]

    # Target no longer empty: a second run is skipped.
    assert migrate_from_sqlite(tmp_path / "old.db", adapter) is None
    assert adapter.count() == 2


def test_migrate_skips_missing_source(tmp_path: Path, adapter: SQLiteAdapter):
    assert migrate_from_sqlite(tmp_path / "nope.db", adapter) is None
    assert not (tmp_path / "nope.db").exists()
