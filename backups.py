"""
backups.py
----------
Timestamped copies of the SQLite file, and JSON dumps of failed saves for
offline inspection. Both are best effort: failures are logged, not raised.
"""

from __future__ import annotations

import json
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from database import SQLiteAdapter, StorageAdapter
from logging_setup import get_logger
from schema import ensure_unique_index

logger = get_logger("ledger.backups")

MAX_BACKUPS = 20


def _stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")


class BackupManager:
    def __init__(self, adapter: StorageAdapter, backup_dir: Path | str, *, keep: int = MAX_BACKUPS):
        self.adapter = adapter
        self.backup_dir = Path(backup_dir)
        self.keep = keep

    @property
    def enabled(self) -> bool:
        return isinstance(self.adapter, SQLiteAdapter)

    def run_backup(self) -> Optional[Path]:
        """Copy the database file and prune old copies. Returns the new file."""
        if not isinstance(self.adapter, SQLiteAdapter):
            return None
        try:
            ensure_unique_index(self.adapter)
            self.adapter.checkpoint()
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            target = self.backup_dir / f"data-{_stamp()}.db"
            shutil.copyfile(self.adapter.path, target)
            self.prune()
        except Exception as exc:
            logger.warning("Backup failed: %s", exc)
            return None
        logger.info("Backup written to %s", target)
        return target

    def prune(self) -> list[Path]:
        """Delete the oldest copies beyond ``keep``; names sort chronologically."""
        files = sorted(self.backup_dir.glob("*.db"))
        removed = []
        for old in files[: max(len(files) - self.keep, 0)]:
            try:
                old.unlink()
                removed.append(old)
            except OSError as exc:
                logger.warning("Could not remove old backup %s: %s", old, exc)
        return removed


def write_failure_dump(
    dump_dir: Path | str,
    *,
    session: Optional[dict[str, Any]],
    transactions: Any,
    sample_size: int = 20,
) -> Optional[Path]:
    """Persist a failed save payload sample as ``failed-save-<stamp>.json``."""
    items = transactions if isinstance(transactions, list) else []
    payload = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "session": session,
        "txCount": len(items),
        "sample": items[:sample_size],
    }
    try:
        dump_dir = Path(dump_dir)
        dump_dir.mkdir(parents=True, exist_ok=True)
        target = dump_dir / f"failed-save-{_stamp()}.json"
        target.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    except OSError as exc:
        logger.error("Failed to write save-failure dump: %s", exc)
        return None
    return target
