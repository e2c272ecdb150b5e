"""
schema.py
---------
Idempotent schema setup for the ``transactions`` and ``settings`` tables,
plus the optional one-time copy of an old SQLite file into PostgreSQL.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from database import (
    DEDUP_COLUMNS,
    TRANSACTIONS_TABLE,
    UNIQUE_INDEX,
    SQLiteAdapter,
    StorageAdapter,
    StorageError,
)
from logging_setup import get_logger

logger = get_logger("ledger.schema")

ATTRIBUTION_COLUMNS = ("created_by", "updated_by")


class SchemaError(StorageError):
    """The schema could not be brought to the expected shape."""


@dataclass
class SchemaReport:
    unique_index: bool
    deduplicated: int = 0
    added_columns: tuple[str, ...] = ()


def _create_unique_index_sql() -> str:
    return (
        f"CREATE UNIQUE INDEX IF NOT EXISTS {UNIQUE_INDEX} "
        f"ON {TRANSACTIONS_TABLE}({','.join(DEDUP_COLUMNS)})"
    )


def deduplicate(adapter: StorageAdapter) -> int:
    """Delete every row that is not the lowest id of its dedup group."""
    group = ",".join(DEDUP_COLUMNS)
    result = adapter.execute(
        f"DELETE FROM {TRANSACTIONS_TABLE} WHERE id NOT IN "
        f"(SELECT MIN(id) FROM {TRANSACTIONS_TABLE} GROUP BY {group})"
    )
    return max(result.rowcount, 0)


def ensure_unique_index(adapter: StorageAdapter) -> tuple[bool, int]:
    """Create the dedup index, deduplicating once if existing rows block it.

    Returns ``(created, removed_rows)``. A failure after deduplication is
    logged and reported, not raised.
    """
    try:
        adapter.execute(_create_unique_index_sql())
        return True, 0
    except SQLAlchemyError as exc:
        logger.warning(
            "[%s] Unique index creation failed, attempting to deduplicate existing rows: %s",
            adapter.driver,
            exc,
        )

    try:
        removed = deduplicate(adapter)
        logger.info("[%s] Deduplication removed %d rows, retrying index creation", adapter.driver, removed)
        adapter.execute(_create_unique_index_sql())
        return True, removed
    except SQLAlchemyError as exc:
        logger.error("[%s] Deduplication or index recreation failed: %s", adapter.driver, exc)
        return False, 0


def ensure_column(adapter: StorageAdapter, table: str, column: str, column_type: str = "TEXT") -> bool:
    """Add ``column`` when missing. Returns True when the column was added.

    A failed ALTER is only tolerated when the column turns out to exist.
    """
    try:
        adapter.execute(adapter.add_column_sql(table, column, column_type))
    except SQLAlchemyError as exc:
        if column in adapter.column_names(table):
            logger.debug("Column %s.%s already present", table, column)
            return False
        raise SchemaError(f"Could not add column {table}.{column}: {exc}") from exc
    return True


def ensure_schema(adapter: StorageAdapter) -> SchemaReport:
    """Bring the database to the expected schema; safe to run at every startup."""
    try:
        adapter.run_script(
            adapter.create_transactions_table_sql() + ";\n" + adapter.create_settings_table_sql() + ";"
        )
    except SQLAlchemyError as exc:
        raise SchemaError(f"Could not create tables: {exc}") from exc

    created, removed = ensure_unique_index(adapter)

    existing = adapter.column_names(TRANSACTIONS_TABLE)
    added = []
    for column in ATTRIBUTION_COLUMNS:
        if ensure_column(adapter, TRANSACTIONS_TABLE, column) and column not in existing:
            added.append(column)

    return SchemaReport(unique_index=created, deduplicated=removed, added_columns=tuple(added))


def migrate_from_sqlite(source_path: Path | str, target: StorageAdapter) -> Optional[int]:
    """Copy every row of a SQLite file into an empty ``target`` store.

    Runs in one transaction on the target; any failure rolls it back and is
    logged. Returns the number of migrated rows, or ``None`` when skipped or
    failed.
    """
    source_path = Path(source_path)
    if not source_path.is_file():
        logger.info("[Migration] No SQLite file found to migrate.")
        return None

    source = SQLiteAdapter(source_path)
    try:
        try:
            rows = source.query_all(f"SELECT * FROM {TRANSACTIONS_TABLE} ORDER BY id ASC")
        except SQLAlchemyError as exc:
            logger.warning("[Migration] Could not read SQLite source: %s", exc)
            return None
        if target.count() != 0 or not rows:
            logger.info("[Migration] Skipped (target not empty or no rows in SQLite).")
            return None

        logger.info("[Migration] Importing %d rows from SQLite -> %s", len(rows), target.driver)
        try:
            with target.transaction() as tx:
                for row in rows:
                    tx.execute(
                        target.insert_ignore_sql(),
                        {
                            "type": row["type"],
                            "name": row["name"],
                            "date": row["date"],
                            "amount": row["amount"],
                            "created_by": row.get("created_by"),
                            "updated_by": row.get("updated_by"),
                        },
                    )
        except SQLAlchemyError as exc:
            logger.error("[Migration] Failed, rolled back: %s", exc)
            return None
        logger.info("[Migration] Completed successfully.")
        return len(rows)
    finally:
        source.close()
