"""
importer.py
-----------
Seed the transactions table from a dual-column CSV (the same layout the
snapshot generator writes). A marker row in ``settings`` records a finished
import so that the one-time endpoint does not run twice by accident.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from database import SETTINGS_TABLE, TRANSACTIONS_TABLE, StorageAdapter, StorageError
from logging_setup import get_logger
from models import Transaction, parse_amount
from snapshot import EXPENDITURE_COLUMNS, INCOME_COLUMNS

logger = get_logger("ledger.importer")

IMPORT_MARKER_KEY = "csv_import_done"
ALREADY_DONE_REASON = "CSV import already completed previously."
_READ_WIDTH = 16


class CsvImportError(StorageError):
    """The import transaction failed and was rolled back."""


@dataclass
class ImportOutcome:
    imported: Optional[int] = None
    skipped: bool = False
    reason: Optional[str] = None

    @property
    def already_done(self) -> bool:
        return self.skipped and self.reason == ALREADY_DONE_REASON

    def to_dict(self) -> dict[str, Any]:
        if self.skipped:
            return {"skipped": True, "reason": self.reason}
        return {"imported": self.imported}


def _pick(row: pd.Series, tx_type: str, columns: tuple[int, int, int]) -> Optional[Transaction]:
    name, tx_date, raw_amount = (str(row[c]).strip() for c in columns)
    amount = parse_amount(raw_amount) if raw_amount else None
    if not name or not tx_date or amount is None:
        return None
    return Transaction(id=None, type=tx_type, name=name, date=tx_date, amount=amount)


def parse_dual_column_csv(raw: str) -> list[Transaction]:
    """Turn dual-column CSV text into candidates, expenditure before income per line.

    The first two lines are headers. Each side of a line is kept or skipped
    on its own.
    """
    frame = pd.read_csv(
        io.StringIO(raw),
        header=None,
        skiprows=2,
        names=list(range(_READ_WIDTH)),
        index_col=False,
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
    ).fillna("")

    candidates = []
    for _, row in frame.iterrows():
        for tx_type, columns in (("expenditure", EXPENDITURE_COLUMNS), ("income", INCOME_COLUMNS)):
            tx = _pick(row, tx_type, columns)
            if tx is not None:
                candidates.append(tx)
    return candidates


class CsvImporter:
    def __init__(self, adapter: StorageAdapter, csv_path: Path | str):
        self.adapter = adapter
        self.csv_path = Path(csv_path)

    def has_run(self) -> bool:
        rows = self.adapter.query_all(
            f"SELECT value FROM {SETTINGS_TABLE} WHERE key = :key", {"key": IMPORT_MARKER_KEY}
        )
        return len(rows) > 0

    def import_once(self, force: bool = False) -> ImportOutcome:
        """Replace stored rows with the CSV contents unless already imported.

        Prior rows are deleted in the same transaction as the inserts, so a
        failed import leaves them untouched.
        """
        if not force and self.has_run():
            return ImportOutcome(skipped=True, reason=ALREADY_DONE_REASON)
        if not self.csv_path.is_file():
            return ImportOutcome(skipped=True, reason="CSV file not found.")

        try:
            raw = self.csv_path.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as exc:
            logger.error("Could not read %s: %s", self.csv_path, exc)
            raise CsvImportError(f"Import failed: {exc}") from exc
        if len(raw.splitlines()) <= 2:
            return ImportOutcome(skipped=True, reason="CSV has no data rows.")

        inserted = 0
        try:
            candidates = parse_dual_column_csv(raw)
            insert_sql = self.adapter.insert_ignore_sql()
            with self.adapter.transaction() as tx:
                tx.execute(f"DELETE FROM {TRANSACTIONS_TABLE}")
                for t in candidates:
                    result = tx.execute(insert_sql, t.to_params())
                    inserted += max(result.rowcount, 0)
                tx.execute(
                    self.adapter.upsert_setting_sql(),
                    {"key": IMPORT_MARKER_KEY, "value": datetime.now(timezone.utc).isoformat()},
                )
        except Exception as exc:
            logger.error("CSV import failed, rolled back: %s", exc)
            raise CsvImportError(f"Import failed: {exc}") from exc

        logger.info("Imported %d transactions from %s", inserted, self.csv_path)
        return ImportOutcome(imported=inserted)

    def import_if_empty(self) -> Optional[ImportOutcome]:
        """Startup seeding: import only into an empty table, ignoring the marker."""
        if self.adapter.count() > 0:
            logger.info("Transactions already present, skipping CSV import.")
            return None
        outcome = self.import_once(force=True)
        if outcome.skipped:
            logger.info("CSV seeding skipped: %s", outcome.reason)
        return outcome
