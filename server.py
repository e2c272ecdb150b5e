"""Ledger backend exposing the transaction sync endpoints over FastAPI."""

from __future__ import annotations

import asyncio
import io
import traceback
import uuid
from contextlib import asynccontextmanager
from typing import Any, Optional

import pandas as pd
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from backups import BackupManager, write_failure_dump
from config import Settings, load_settings
from database import PostgresAdapter, SQLiteAdapter, StorageError, log_db_status, open_storage
from importer import CsvImporter, CsvImportError
from logging_setup import configure_logging, get_logger, log_context
from models import format_amount
from schema import ensure_schema, migrate_from_sqlite
from sessions import ROLE_EDITOR, ROLE_GUEST, Session, SessionStore, hash_secret, verify_secret
from snapshot import SnapshotGenerator
from tasks import BackgroundExecutor
from transactions_store import (
    EmptySaveRefusedError,
    InvalidPayloadError,
    SaveFailedError,
    TransactionStore,
)

logger = get_logger("ledger.server")

SESSION_COOKIE = "sid"
REQUEST_ID_HEADER = "X-Request-ID"
EXPORT_COLUMNS = ["type", "name", "date", "amount", "created_by", "updated_by"]

router = APIRouter()


class StatusResponse(BaseModel):
    status: str


class SessionInfo(BaseModel):
    username: Optional[str]
    role: str


class DbInfoResponse(BaseModel):
    driver: str
    dbFile: Optional[str]
    rowCount: int
    fileSizeBytes: Optional[int]
    mtime: Optional[str]


# --- Dependencies ---

def current_session(request: Request) -> Optional[Session]:
    return request.app.state.sessions.get(request.cookies.get(SESSION_COOKIE))


def require_editor(session: Optional[Session] = Depends(current_session)) -> Session:
    if session is None:
        raise HTTPException(status_code=401, detail="Login required")
    if not session.is_editor:
        raise HTTPException(status_code=403, detail="Forbidden")
    return session


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


def _schedule_snapshot(state: Any) -> None:
    state.executor.submit(state.snapshot.regenerate, name="csv-snapshot")


# --- Auth ---

@router.post("/login")
async def login(request: Request, response: Response):
    body = await _json_body(request) or {}
    if not isinstance(body, dict):
        body = {}
    # Older clients send {username: "guest"} instead of {mode: "guest"}.
    mode = body.get("mode") or body.get("username")
    sessions: SessionStore = request.app.state.sessions

    if mode == "guest":
        session = sessions.create("guest", ROLE_GUEST)
    elif mode == "admin":
        if not verify_secret(body.get("password"), request.app.state.admin_hash):
            return JSONResponse(status_code=401, content={"error": "Invalid password"})
        session = sessions.create("admin", ROLE_EDITOR)
    else:
        return JSONResponse(status_code=400, content={"error": "Invalid mode"})

    response.set_cookie(
        SESSION_COOKIE,
        session.sid,
        httponly=True,
        samesite="lax",
        path="/",
        max_age=int(sessions.ttl_seconds) if sessions.ttl_seconds else None,
    )
    return {"username": session.username, "role": session.role}


@router.post("/logout")
async def logout(request: Request, response: Response):
    request.app.state.sessions.delete(request.cookies.get(SESSION_COOKIE))
    response.delete_cookie(SESSION_COOKIE, path="/", httponly=True, samesite="lax")
    return {"ok": True}


@router.get("/me", response_model=SessionInfo)
async def me(session: Optional[Session] = Depends(current_session)):
    if session is None:
        return {"username": None, "role": ROLE_GUEST}
    return {"username": session.username, "role": session.role}


# --- Transactions ---

@router.get("/transactions")
def list_transactions(request: Request):
    try:
        transactions = request.app.state.store.list()
    except SQLAlchemyError as exc:
        logger.error("Failed to fetch transactions: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Failed to fetch transactions"})
    return {"transactions": [t.to_client() for t in transactions]}


@router.post("/transactions", response_model=StatusResponse)
async def save_transactions(request: Request, session: Session = Depends(require_editor)):
    body = await _json_body(request)
    transactions = body.get("transactions") if isinstance(body, dict) else None
    state = request.app.state

    try:
        await run_in_threadpool(
            state.store.replace_all,
            transactions,
            on_committed=lambda: _schedule_snapshot(state),
        )
    except (InvalidPayloadError, EmptySaveRefusedError) as exc:
        return JSONResponse(status_code=400, content={"error": str(exc)})
    except SQLAlchemyError as exc:
        # Raised before the replace transaction opened; nothing to roll back.
        logger.error("[POST /transactions] Could not check existing rows: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Failed to save transactions"})
    except SaveFailedError as exc:
        sample = [
            {k: t.get(k) for k in ("type", "name", "date", "amount")}
            for t in transactions[:5]
            if isinstance(t, dict)
        ]
        logger.error(
            "[POST /transactions] Save failed: %s | session=%s txCount=%d sample=%s",
            exc,
            session.public(),
            len(transactions),
            sample,
        )
        await run_in_threadpool(
            write_failure_dump,
            state.settings.failure_dump_dir,
            session=session.public(),
            transactions=transactions,
        )
        cause = exc.__cause__ or exc
        details = "".join(traceback.format_exception(type(cause), cause, cause.__traceback__))
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to save transactions", "details": details[:2000]},
        )
    return {"status": "ok"}


@router.get("/transactions.csv")
def export_transactions_csv(request: Request):
    try:
        transactions = request.app.state.store.export()
    except SQLAlchemyError as exc:
        logger.error("Failed to export CSV: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Failed to export CSV"})

    frame = pd.DataFrame(
        [
            [t.type, t.name, t.date, format_amount(t.amount), t.created_by or "", t.updated_by or ""]
            for t in transactions
        ],
        columns=EXPORT_COLUMNS,
    )
    buffer = io.StringIO()
    frame.to_csv(buffer, index=False, lineterminator="\n")
    return Response(content=buffer.getvalue(), media_type="text/csv")


@router.post("/import-csv-once")
def import_csv_once(request: Request):
    state = request.app.state
    try:
        outcome = state.importer.import_once(force=False)
    except CsvImportError as exc:
        return JSONResponse(status_code=500, content={"error": str(exc)})
    except SQLAlchemyError as exc:
        logger.error("Unexpected error during import: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Unexpected error during import"})

    if outcome.already_done:
        return JSONResponse(status_code=409, content=outcome.to_dict())
    if not outcome.skipped:
        _schedule_snapshot(state)
    return outcome.to_dict()


@router.get("/debug/db-info", response_model=DbInfoResponse)
def db_info(request: Request):
    try:
        return request.app.state.adapter.describe()
    except SQLAlchemyError as exc:
        logger.error("Failed to read db info: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Failed to read db info"})


@router.get("/health", response_model=StatusResponse)
async def health():
    return {"status": "ok"}


# --- App wiring ---

async def _backup_loop(manager: BackupManager, interval_seconds: float) -> None:
    while True:
        await asyncio.to_thread(manager.run_backup)
        await asyncio.sleep(interval_seconds)


def _startup(app: FastAPI, settings: Settings) -> None:
    adapter = open_storage(settings)
    try:
        report = ensure_schema(adapter)
    except (StorageError, SQLAlchemyError):
        logger.critical("Startup failed: could not initialize schema", exc_info=True)
        adapter.close()
        raise
    if not report.unique_index:
        logger.error("Unique index on transactions is missing; duplicates are not prevented")

    if settings.migrate_from_sqlite and isinstance(adapter, PostgresAdapter):
        migrate_from_sqlite(settings.db_path, adapter)

    state = app.state
    state.settings = settings
    state.adapter = adapter
    state.store = TransactionStore(adapter, allow_empty_save=settings.allow_empty_save)
    state.snapshot = SnapshotGenerator(adapter, settings.snapshot_path)
    state.importer = CsvImporter(adapter, settings.snapshot_path)
    state.executor = BackgroundExecutor()
    state.sessions = SessionStore(ttl_seconds=settings.session_ttl_seconds)
    state.admin_hash = hash_secret(settings.admin_password) if settings.admin_password else None
    state.backups = BackupManager(adapter, settings.backup_dir)

    if settings.import_csv_on_startup:
        try:
            outcome = state.importer.import_if_empty()
        except CsvImportError as exc:
            logger.error("CSV seeding failed: %s", exc)
        else:
            if outcome is not None and not outcome.skipped:
                _schedule_snapshot(state)

    log_db_status(adapter)
    if isinstance(adapter, SQLiteAdapter) and settings.app_env == "production":
        logger.warning(
            "Running with SQLite in production; on ephemeral hosts data WILL reset. "
            "Set DATABASE_URL for Postgres."
        )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        _startup(app, settings)
        state = app.state

        backup_task = None
        if settings.backups_enabled and state.backups.enabled:
            backup_task = asyncio.create_task(
                _backup_loop(state.backups, settings.backup_interval_seconds)
            )
        try:
            yield
        finally:
            if backup_task is not None:
                backup_task.cancel()
                try:
                    await backup_task
                except asyncio.CancelledError:
                    pass
            state.executor.shutdown(wait=True)
            state.adapter.close()

    app = FastAPI(title="Ledger Sync", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=".*",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def _request_context(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]
        with log_context(request_id=request_id, method=request.method, path=request.url.path):
            response = await call_next(request)
            logger.debug("-> %d", response.status_code)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    app.include_router(router)
    # Path prefix used by the browser client.
    app.include_router(router, prefix="/api")
    return app


app = create_app()


def main() -> None:
    import uvicorn

    settings = load_settings()
    uvicorn.run("server:app", host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
