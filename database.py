"""
database.py
-----------
Storage adapter over the two interchangeable engines: a local SQLite file
and a PostgreSQL server. Both expose the same ``execute`` / ``query_all`` /
``run_script`` / ``transaction`` surface; every SQL dialect difference the
rest of the code needs lives on the adapter classes below.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterator, Mapping, NamedTuple, Optional, Sequence

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from config import Settings
from logging_setup import get_logger

logger = get_logger("ledger.database")

TRANSACTIONS_TABLE = "transactions"
SETTINGS_TABLE = "settings"
UNIQUE_INDEX = "transactions_unique_idx"
DEDUP_COLUMNS = ("type", "name", "date", "amount")
INSERT_COLUMNS = ("type", "name", "date", "amount", "created_by", "updated_by")


class StorageError(Exception):
    """Base exception for storage operations."""


class ExecuteResult(NamedTuple):
    rowcount: int
    lastrowid: Optional[int]


def _normalize_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


class TransactionScope:
    """Statement runner bound to one open database transaction."""

    def __init__(self, adapter: "StorageAdapter", conn: Connection):
        self._adapter = adapter
        self._conn = conn

    def execute(self, statement: str, params: Optional[Mapping[str, Any]] = None) -> ExecuteResult:
        result = self._conn.execute(text(statement), dict(params or {}))
        lastrowid = result.lastrowid if self._adapter.reports_lastrowid else None
        return ExecuteResult(rowcount=result.rowcount, lastrowid=lastrowid)

    def query_all(
        self, statement: str, params: Optional[Mapping[str, Any]] = None
    ) -> list[dict[str, Any]]:
        result = self._conn.execute(text(statement), dict(params or {}))
        return [
            {k: _normalize_value(v) for k, v in row.items()} for row in result.mappings().all()
        ]


class StorageAdapter(ABC):
    """Uniform execute/query/script/transaction interface over one engine."""

    driver: str = ""
    reports_lastrowid: bool = False

    def __init__(self, engine: Engine):
        self.engine = engine

    # --- Statement surface ---

    @contextmanager
    def transaction(self) -> Iterator[TransactionScope]:
        """Open a transaction; commit on exit, roll back and re-raise on error."""
        with self.engine.begin() as conn:
            yield TransactionScope(self, conn)

    def execute(self, statement: str, params: Optional[Mapping[str, Any]] = None) -> ExecuteResult:
        with self.transaction() as tx:
            return tx.execute(statement, params)

    def query_all(
        self, statement: str, params: Optional[Mapping[str, Any]] = None
    ) -> list[dict[str, Any]]:
        with self.engine.connect() as conn:
            return TransactionScope(self, conn).query_all(statement, params)

    @abstractmethod
    def run_script(self, script: str) -> None:
        """Run several ``;``-separated statements."""

    def ping(self) -> None:
        self.query_all("SELECT 1 AS ok")

    def count(self, table: str = TRANSACTIONS_TABLE) -> int:
        rows = self.query_all(f"SELECT COUNT(*) AS count FROM {table}")
        return int(rows[0]["count"])

    def column_names(self, table: str) -> set[str]:
        return {col["name"] for col in inspect(self.engine).get_columns(table)}

    # --- Dialect ---

    @abstractmethod
    def create_transactions_table_sql(self) -> str: ...

    def create_settings_table_sql(self) -> str:
        return f"CREATE TABLE IF NOT EXISTS {SETTINGS_TABLE} (key TEXT PRIMARY KEY, value TEXT)"

    @abstractmethod
    def insert_ignore_sql(self, columns: Sequence[str] = INSERT_COLUMNS) -> str:
        """INSERT that silently drops rows colliding with the unique index."""

    @abstractmethod
    def add_column_sql(self, table: str, column: str, column_type: str) -> str: ...

    @abstractmethod
    def upsert_setting_sql(self) -> str: ...

    # --- Diagnostics ---

    @property
    def db_file(self) -> Optional[Path]:
        return None

    def describe(self) -> dict[str, Any]:
        info: dict[str, Any] = {
            "driver": self.driver,
            "dbFile": None,
            "rowCount": self.count(),
            "fileSizeBytes": None,
            "mtime": None,
        }
        if self.db_file is not None:
            info["dbFile"] = str(self.db_file)
            try:
                stats = self.db_file.stat()
                info["fileSizeBytes"] = stats.st_size
                info["mtime"] = datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc).isoformat()
            except OSError:
                pass
        return info

    def close(self) -> None:
        self.engine.dispose()


def _insert_values(columns: Sequence[str]) -> str:
    return ", ".join(f":{c}" for c in columns)


class SQLiteAdapter(StorageAdapter):
    driver = "sqlite"
    reports_lastrowid = True

    def __init__(self, path: Path | str):
        self.path = Path(path).resolve()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            f"sqlite+pysqlite:///{self.path}",
            connect_args={"check_same_thread": False},
        )

        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_conn, _):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        super().__init__(engine)

    @property
    def db_file(self) -> Optional[Path]:
        return self.path

    def run_script(self, script: str) -> None:
        raw = self.engine.raw_connection()
        try:
            raw.driver_connection.executescript(script)
            raw.commit()
        finally:
            raw.close()

    def checkpoint(self) -> None:
        """Flush the write-ahead log into the main database file."""
        self.query_all("PRAGMA wal_checkpoint(PASSIVE)")

    def create_transactions_table_sql(self) -> str:
        return f"""CREATE TABLE IF NOT EXISTS {TRANSACTIONS_TABLE} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            type TEXT NOT NULL CHECK(type IN ('income','expenditure')),
            name TEXT NOT NULL,
            date TEXT NOT NULL,
            amount REAL NOT NULL
        )"""

    def insert_ignore_sql(self, columns: Sequence[str] = INSERT_COLUMNS) -> str:
        return (
            f"INSERT OR IGNORE INTO {TRANSACTIONS_TABLE} ({', '.join(columns)}) "
            f"VALUES ({_insert_values(columns)})"
        )

    def add_column_sql(self, table: str, column: str, column_type: str) -> str:
        return f"ALTER TABLE {table} ADD COLUMN {column} {column_type}"

    def upsert_setting_sql(self) -> str:
        return f"INSERT OR REPLACE INTO {SETTINGS_TABLE} (key, value) VALUES (:key, :value)"


def normalize_postgres_url(url: str) -> str:
    """Map ``postgres://`` style URLs onto the psycopg2 SQLAlchemy dialect."""
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = "postgresql+psycopg2://" + url[len("postgresql://"):]
    return url


class PostgresAdapter(StorageAdapter):
    driver = "postgres"

    def __init__(self, url: str, *, ssl: bool = True):
        connect_args = {"sslmode": "require"} if ssl else {}
        engine = create_engine(
            normalize_postgres_url(url),
            pool_pre_ping=True,
            connect_args=connect_args,
        )
        super().__init__(engine)

    def run_script(self, script: str) -> None:
        # The server protocol takes one statement per call.
        statements = [s.strip() for s in script.split(";") if s.strip()]
        with self.engine.begin() as conn:
            for statement in statements:
                conn.exec_driver_sql(statement)

    def create_transactions_table_sql(self) -> str:
        return f"""CREATE TABLE IF NOT EXISTS {TRANSACTIONS_TABLE} (
            id SERIAL PRIMARY KEY,
            type TEXT NOT NULL CHECK (type IN ('income','expenditure')),
            name TEXT NOT NULL,
            date DATE NOT NULL,
            amount NUMERIC NOT NULL
        )"""

    def insert_ignore_sql(self, columns: Sequence[str] = INSERT_COLUMNS) -> str:
        return (
            f"INSERT INTO {TRANSACTIONS_TABLE} ({', '.join(columns)}) "
            f"VALUES ({_insert_values(columns)}) ON CONFLICT DO NOTHING"
        )

    def add_column_sql(self, table: str, column: str, column_type: str) -> str:
        return f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS {column} {column_type}"

    def upsert_setting_sql(self) -> str:
        return (
            f"INSERT INTO {SETTINGS_TABLE} (key, value) VALUES (:key, :value) "
            "ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value"
        )


def open_storage(settings: Settings) -> StorageAdapter:
    """Pick the engine once for the process lifetime.

    A configured ``DATABASE_URL`` is tried first with a liveness probe; any
    failure falls back to the SQLite file permanently.
    """
    if settings.database_url:
        adapter: Optional[StorageAdapter] = None
        try:
            adapter = PostgresAdapter(settings.database_url, ssl=settings.pg_ssl)
            adapter.ping()
            logger.info("[Postgres] Connected.")
            return adapter
        except (SQLAlchemyError, ImportError) as exc:
            logger.error("[Postgres] Failed to initialize, falling back to SQLite: %s", exc)
            if adapter is not None:
                adapter.close()

    adapter = SQLiteAdapter(settings.db_path)
    logger.info("[SQLite] Using database file: %s", settings.db_path)
    return adapter


def log_db_status(adapter: StorageAdapter) -> None:
    try:
        info = adapter.describe()
    except SQLAlchemyError as exc:
        logger.warning("Could not log DB status: %s", exc)
        return
    if info["dbFile"]:
        size = f"({info['fileSizeBytes']} bytes)" if info["fileSizeBytes"] is not None else ""
        logger.info("[SQLite] Rows: %s | File: %s %s", info["rowCount"], info["dbFile"], size)
    else:
        logger.info("[Postgres] Rows: %s", info["rowCount"])
