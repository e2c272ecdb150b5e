"""Logging for the ledger backend.

Every module logs through ``get_logger(name)`` under the ``"ledger"``
namespace. The server calls ``configure_logging(...)`` once at startup,
which attaches a single ``StreamHandler`` to that namespace.

Request-scoped fields (request id, method, path) are bound with
``log_context(...)`` and appended to each line emitted while the context
is active, including lines from background work started inside it::

    with log_context(request_id="3f2a9c1e", path="/transactions"):
        logger.info("Saved %d rows", n)
    # ... ledger.transactions INFO Saved 12 rows [request_id=3f2a9c1e path=/transactions]
"""

from __future__ import annotations

import contextvars
import logging
import os
import sys
from contextlib import contextmanager
from typing import IO, Any, Iterator, Mapping

_PKG_LOGGER_NAME = "ledger"
_CONFIGURED = False

DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s%(context)s"

_log_context: contextvars.ContextVar[Mapping[str, Any]] = contextvars.ContextVar(
    "ledger_log_context", default={}
)


def current_context() -> Mapping[str, Any]:
    return _log_context.get()


@contextmanager
def log_context(**fields: Any) -> Iterator[Mapping[str, Any]]:
    """Bind ``fields`` to every ledger log line emitted inside the block.

    Nested contexts merge, inner values winning; ``None`` values are dropped.
    """
    merged = {**_log_context.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _log_context.set(merged)
    try:
        yield merged
    finally:
        _log_context.reset(token)


class ContextFilter(logging.Filter):
    """Render the active log context onto ``record.context``."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = _log_context.get()
        record.context = (" [" + " ".join(f"{k}={v}" for k, v in ctx.items()) + "]") if ctx else ""
        return True


def _parse_level(level: int | str | None) -> int:
    if level is None:
        level = os.getenv("LEDGER_LOG_LEVEL")
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        level = level.strip().upper()
        if level.isdigit():
            return int(level)
        numeric = getattr(logging, level, None)
        if isinstance(numeric, int):
            return numeric
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] | None = None,
) -> logging.Handler | None:
    """Attach the ledger handler once. Returns it, or ``None`` if already configured."""

    global _CONFIGURED
    if _CONFIGURED:
        return None

    logger = logging.getLogger(_PKG_LOGGER_NAME)
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    numeric = _parse_level(level)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(numeric)
    handler.addFilter(ContextFilter())
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))

    logger.setLevel(numeric)
    logger.addHandler(handler)
    # Uvicorn configures the root logger too.
    logger.propagate = False

    _CONFIGURED = True
    return handler


def get_logger(name: str) -> logging.Logger:
    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)
