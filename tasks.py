"""Fire-and-forget background work on a small ThreadPoolExecutor.

Submitted tasks are never awaited by request handlers. Anything a task
raises is reported through the ``ledger.tasks`` logger and goes no further.
"""

from __future__ import annotations

import contextvars
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from logging_setup import get_logger

logger = get_logger("ledger.tasks")


class BackgroundExecutor:
    """Tasks run inside a copy of the submitter's context, so log context follows them."""

    def __init__(self, max_workers: int = 1, *, thread_name_prefix: str = "ledger-bg"):
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=thread_name_prefix)

    def submit(self, fn: Callable[..., Any], *args: Any, name: str | None = None, **kwargs: Any) -> Future:
        label = name or getattr(fn, "__name__", repr(fn))
        ctx = contextvars.copy_context()
        future = self._pool.submit(ctx.run, fn, *args, **kwargs)
        future.add_done_callback(lambda f: ctx.copy().run(self._report, label, f))
        return future

    @staticmethod
    def _report(label: str, future: Future) -> None:
        if future.cancelled():
            logger.info("Background task %s was cancelled", label)
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Background task %s failed: %s", label, exc, exc_info=exc)

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
