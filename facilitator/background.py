"""
Detached work scheduled after a response is produced.

Tasks run on a shared thread pool so the request thread never waits on
them. Every task has its own error boundary: failures are logged and
dropped. The pool's worker threads are joined at interpreter shutdown, so
submitted tasks run to completion.
"""
from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional, Set

from django.conf import settings
from django.db import close_old_connections
from loguru import logger


class BackgroundTaskRunner:

    def __init__(self, max_workers: int = 4, inline: bool = False):
        self.inline = inline
        self._executor = None if inline else ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix='x402-background')
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, fn: Callable[..., Any], *args: Any, label: str = '', **kwargs: Any) -> None:
        label = label or getattr(fn, '__name__', 'task')
        if self.inline:
            self._run(fn, label, args, kwargs)
            return

        future = self._executor.submit(self._run_in_worker, fn, label, args, kwargs)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._on_done)

    def _run(self, fn, label, args, kwargs) -> None:
        try:
            fn(*args, **kwargs)
        except Exception:
            logger.exception('Background task {} failed', label)

    def _run_in_worker(self, fn, label, args, kwargs) -> None:
        close_old_connections()
        try:
            self._run(fn, label, args, kwargs)
        finally:
            close_old_connections()

    def _on_done(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def wait_for_background_tasks(self, timeout: Optional[float] = None) -> None:
        """Block until every task submitted so far has finished."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)


_runner: Optional[BackgroundTaskRunner] = None
_runner_lock = threading.Lock()


def get_background_runner() -> BackgroundTaskRunner:
    global _runner
    with _runner_lock:
        if _runner is None:
            _runner = BackgroundTaskRunner(
                max_workers=getattr(settings, 'X402_BACKGROUND_WORKERS', 4),
                inline=getattr(settings, 'X402_BACKGROUND_INLINE', False),
            )
        return _runner
