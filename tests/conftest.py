"""Shared fixtures: a temp-file SQLite store and an app wired to temp paths.

Every test gets its own database file under ``tmp_path`` so nothing leaks
between tests (an in-memory SQLite DB would be per-connection).
"""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import SQLiteAdapter
from schema import ensure_schema
from server import create_app
from transactions_store import TransactionStore

ADMIN_PASSWORD = "s3cret-admin"


@pytest.fixture
def adapter(tmp_path: Path):
    db = SQLiteAdapter(tmp_path / "data.db")
    ensure_schema(db)
    yield db
    db.close()


@pytest.fixture
def store(adapter: SQLiteAdapter) -> TransactionStore:
    return TransactionStore(adapter)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_url=None,
        pg_ssl=False,
        data_dir=tmp_path,
        db_path=tmp_path / "data.db",
        snapshot_path=tmp_path / "updated-financial-data.csv",
        admin_password=ADMIN_PASSWORD,
        allow_empty_save=False,
        backups_enabled=False,
        backup_interval_seconds=3600,
        migrate_from_sqlite=False,
        import_csv_on_startup=False,
        session_ttl_seconds=None,
        log_level="WARNING",
        app_env="",
        port=3000,
    )


@pytest.fixture
def client(settings: Settings):
    with TestClient(create_app(settings)) as c:
        yield c


@pytest.fixture
def editor(client: TestClient) -> TestClient:
    resp = client.post("/login", json={"mode": "admin", "password": ADMIN_PASSWORD})
    assert resp.status_code == 200
    return client
