from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from database import (
    PostgresAdapter,
    SQLiteAdapter,
    normalize_postgres_url,
    open_storage,
)


def test_execute_query_and_script_roundtrip(tmp_path: Path):
    db = SQLiteAdapter(tmp_path / "nested" / "x.db")
    try:
        db.run_script("CREATE TABLE t (id INTEGER PRIMARY KEY, v TEXT); CREATE TABLE u (k TEXT);")
        result = db.execute("INSERT INTO t (v) VALUES (:v)", {"v": "a"})
        assert result.rowcount == 1
        assert result.lastrowid == 1
        db.execute("INSERT INTO t (v) VALUES (:v)", {"v": "b"})
        assert db.query_all("SELECT v FROM t ORDER BY id") == [{"v": "a"}, {"v": "b"}]
        assert db.count("t") == 2
        assert (tmp_path / "nested" / "x.db").is_file()
    finally:
        db.close()


def test_transaction_rolls_back_on_error(tmp_path: Path):
    db = SQLiteAdapter(tmp_path / "x.db")
    try:
        db.run_script("CREATE TABLE t (v TEXT NOT NULL);")
        db.execute("INSERT INTO t (v) VALUES ('keep')")
        with pytest.raises(RuntimeError):
            with db.transaction() as tx:
                tx.execute("DELETE FROM t")
                assert tx.query_all("SELECT COUNT(*) AS c FROM t") == [{"c": 0}]
                raise RuntimeError("boom")
        assert db.query_all("SELECT v FROM t") == [{"v": "keep"}]
    finally:
        db.close()


def test_sqlite_runs_in_wal_mode(adapter: SQLiteAdapter):
    assert adapter.query_all("PRAGMA journal_mode")[0]["journal_mode"] == "wal"


def test_describe_reports_file_details(adapter: SQLiteAdapter):
    info = adapter.describe()
    assert info["driver"] == "sqlite"
    assert info["dbFile"] == str(adapter.path)
    assert info["rowCount"] == 0
    assert info["fileSizeBytes"] is not None
    assert info["mtime"]


def test_normalize_postgres_url():
    assert normalize_postgres_url("postgres://u:p@h/db") == "postgresql+psycopg2://u:p@h/db"
    assert normalize_postgres_url("postgresql://u:p@h/db") == "postgresql+psycopg2://u:p@h/db"
    assert normalize_postgres_url("postgresql+psycopg2://u@h/db") == "postgresql+psycopg2://u@h/db"


def test_open_storage_defaults_to_sqlite(settings):
    adapter = open_storage(settings)
    try:
        assert isinstance(adapter, SQLiteAdapter)
        assert adapter.path == settings.db_path.resolve()
    finally:
        adapter.close()


def test_open_storage_falls_back_when_postgres_unreachable(settings):
    # Port 1 on localhost refuses connections immediately.
    unreachable = replace(settings, database_url="postgresql://user:pw@127.0.0.1:1/ledger")
    adapter = open_storage(unreachable)
    try:
        assert isinstance(adapter, SQLiteAdapter)
        assert not isinstance(adapter, PostgresAdapter)
    finally:
        adapter.close()


def test_dialects_differ_only_inside_adapters(adapter: SQLiteAdapter):
    assert "INSERT OR IGNORE" in adapter.insert_ignore_sql()
    assert "AUTOINCREMENT" in adapter.create_transactions_table_sql()
    pg = PostgresAdapter.__new__(PostgresAdapter)
    assert pg.insert_ignore_sql().endswith("ON CONFLICT DO NOTHING")
    assert "SERIAL" in pg.create_transactions_table_sql()
    assert "IF NOT EXISTS" in pg.add_column_sql("transactions", "created_by", "TEXT")
