"""
config.py
---------
Runtime settings for the ledger backend, read from the environment
(with an optional ``.env`` file next to the process).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return int(raw)


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str]
    pg_ssl: bool
    data_dir: Path
    db_path: Path
    snapshot_path: Path
    admin_password: Optional[str]
    allow_empty_save: bool
    backups_enabled: bool
    backup_interval_seconds: int
    migrate_from_sqlite: bool
    import_csv_on_startup: bool
    session_ttl_seconds: Optional[int]
    log_level: str
    app_env: str
    port: int

    @property
    def backup_dir(self) -> Path:
        return self.db_path.parent / "backups"

    @property
    def failure_dump_dir(self) -> Path:
        return self.data_dir / "save-failures"


def load_settings() -> Settings:
    """Build :class:`Settings` from the current environment."""
    data_dir = Path(os.getenv("DATA_DIR") or os.getcwd()).resolve()
    db_path_raw = os.getenv("DB_PATH")
    db_path = Path(db_path_raw).resolve() if db_path_raw else data_dir / "data.db"
    snapshot_raw = os.getenv("SNAPSHOT_PATH")
    snapshot_path = (
        Path(snapshot_raw).resolve() if snapshot_raw else data_dir / "updated-financial-data.csv"
    )

    return Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        pg_ssl=os.getenv("PGSSL", "1") != "0",
        data_dir=data_dir,
        db_path=db_path,
        snapshot_path=snapshot_path,
        admin_password=os.getenv("ADMIN_PASSWORD") or None,
        allow_empty_save=_flag("ALLOW_EMPTY_SAVE"),
        backups_enabled=_flag("DB_BACKUPS"),
        backup_interval_seconds=int(os.getenv("BACKUP_INTERVAL_SECONDS", str(6 * 60 * 60))),
        migrate_from_sqlite=_flag("PG_MIGRATE_FROM_SQLITE"),
        import_csv_on_startup=_flag("IMPORT_CSV_ON_STARTUP"),
        session_ttl_seconds=_optional_int("SESSION_TTL_SECONDS"),
        log_level=os.getenv("LEDGER_LOG_LEVEL", "INFO"),
        app_env=os.getenv("APP_ENV", ""),
        port=int(os.getenv("PORT", "3000")),
    )
