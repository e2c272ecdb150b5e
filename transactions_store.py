"""
transactions_store.py
---------------------
Bulk-replace synchronization of the client's transaction list, plus the
read queries behind the list and CSV export endpoints.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from database import TRANSACTIONS_TABLE, StorageAdapter, StorageError
from logging_setup import get_logger
from models import Transaction, candidate_from_payload

logger = get_logger("ledger.transactions")

_SELECT = f"SELECT id, type, name, date, amount, created_by, updated_by FROM {TRANSACTIONS_TABLE}"


class InvalidPayloadError(ValueError):
    """The submitted transactions are not a list."""


class EmptySaveRefusedError(ValueError):
    """An empty save would wipe stored history and the override is not set."""


class SaveFailedError(StorageError):
    """The replace transaction failed and was rolled back."""


@dataclass
class ReplaceOutcome:
    received: int
    inserted: int
    invalid: int
    duplicates: int


class TransactionStore:
    def __init__(self, adapter: StorageAdapter, *, allow_empty_save: bool = False):
        self.adapter = adapter
        self.allow_empty_save = allow_empty_save

    def list(self) -> list[Transaction]:
        """Most recent first."""
        rows = self.adapter.query_all(f"{_SELECT} ORDER BY date DESC, id DESC")
        return [Transaction.from_row(r) for r in rows]

    def export(self) -> list[Transaction]:
        """Chronological order."""
        rows = self.adapter.query_all(f"{_SELECT} ORDER BY date ASC, id ASC")
        return [Transaction.from_row(r) for r in rows]

    def count(self) -> int:
        return self.adapter.count()

    def replace_all(
        self,
        candidates: Any,
        *,
        on_committed: Optional[Callable[[], Any]] = None,
    ) -> ReplaceOutcome:
        """Atomically replace every stored transaction with ``candidates``.

        Invalid candidates are skipped, and candidates colliding on
        (type, name, date, amount) collapse to the first one submitted.
        ``on_committed`` runs after a successful commit; its failures are
        logged, never raised.
        """
        if not isinstance(candidates, (list, tuple)):
            raise InvalidPayloadError("Invalid payload")

        if not candidates and not self.allow_empty_save and self.count() > 0:
            raise EmptySaveRefusedError(
                "Refusing empty save that would delete existing data "
                "(set ALLOW_EMPTY_SAVE=1 to override)."
            )

        valid = [tx for tx in (candidate_from_payload(c) for c in candidates) if tx is not None]
        inserted = 0
        insert_sql = self.adapter.insert_ignore_sql()
        try:
            with self.adapter.transaction() as tx:
                tx.execute(f"DELETE FROM {TRANSACTIONS_TABLE}")
                for t in valid:
                    result = tx.execute(insert_sql, t.to_params())
                    inserted += max(result.rowcount, 0)
        except Exception as exc:
            logger.error("Bulk replace of %d transactions failed, rolled back: %s", len(candidates), exc)
            raise SaveFailedError(f"Failed to save transactions: {exc}") from exc

        outcome = ReplaceOutcome(
            received=len(candidates),
            inserted=inserted,
            invalid=len(candidates) - len(valid),
            duplicates=len(valid) - inserted,
        )
        logger.info(
            "Replaced transactions: %d received, %d stored, %d invalid, %d duplicates",
            outcome.received,
            outcome.inserted,
            outcome.invalid,
            outcome.duplicates,
        )

        if on_committed is not None:
            try:
                on_committed()
            except Exception:
                logger.exception("Post-commit hook failed")
        return outcome
