"""
snapshot.py
-----------
Regenerate the dual-column CSV snapshot (expenditures on the left, incomes
on the right) from the current rows. The snapshot is a side artifact for
backup and re-import; the database stays the source of truth.
"""

from __future__ import annotations

import os
import tempfile
from itertools import zip_longest
from pathlib import Path
from typing import Optional

import pandas as pd

from database import TRANSACTIONS_TABLE, StorageAdapter
from logging_setup import get_logger
from models import Transaction, format_amount

logger = get_logger("ledger.snapshot")

HEADER_LINES = (
    "Expenditure,,,,,,,Income,,,,,,,",
    "Name,Date,Amount,Quantity,,Name,Date,Amount,,,,,,,",
)
# Column positions shared with the importer.
EXPENDITURE_COLUMNS = (0, 1, 2)
INCOME_COLUMNS = (5, 6, 7)
ROW_WIDTH = 13


def _side(tx: Optional[Transaction]) -> list[str]:
    if tx is None:
        return ["", "", ""]
    return [tx.name, tx.date, format_amount(tx.amount)]


def build_frame(transactions: list[Transaction]) -> pd.DataFrame:
    """Zip expenditures and incomes into side-by-side rows, padding with blanks."""
    expenditures = [t for t in transactions if t.type == "expenditure"]
    incomes = [t for t in transactions if t.type == "income"]

    rows = []
    for exp, inc in zip_longest(expenditures, incomes):
        row = [""] * ROW_WIDTH
        for col, value in zip(EXPENDITURE_COLUMNS, _side(exp)):
            row[col] = value
        for col, value in zip(INCOME_COLUMNS, _side(inc)):
            row[col] = value
        rows.append(row)
    return pd.DataFrame(rows, columns=range(ROW_WIDTH), dtype=str)


class SnapshotGenerator:
    def __init__(self, adapter: StorageAdapter, path: Path | str):
        self.adapter = adapter
        self.path = Path(path)

    def regenerate(self) -> bool:
        """Rewrite the snapshot file. Failures are logged and return False."""
        try:
            rows = self.adapter.query_all(f"SELECT * FROM {TRANSACTIONS_TABLE} ORDER BY id ASC")
            frame = build_frame([Transaction.from_row(r) for r in rows])
            self._write(frame)
        except Exception as exc:
            logger.warning("CSV regeneration failed: %s", exc)
            return False
        logger.debug("CSV snapshot regenerated at %s (%d rows)", self.path, len(frame))
        return True

    def _write(self, frame: pd.DataFrame) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Each call writes its own temp file and renames it over the target,
        # so concurrent regenerations never interleave; the last rename wins.
        fd, tmp_name = tempfile.mkstemp(prefix=".snapshot-", suffix=".csv", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                for line in HEADER_LINES:
                    handle.write(line + "\n")
                if not frame.empty:
                    frame.to_csv(handle, header=False, index=False, lineterminator="\n")
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
