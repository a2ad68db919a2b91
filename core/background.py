"""
core/background.py -- Supervised fire-and-forget work.

Pattern: every submitted callable runs inside its own error-capture boundary
(_supervise). Any exception is logged with its traceback and swallowed, so a
failing email send can neither reach the request that triggered it nor take
down a worker thread.

The runner tracks in-flight futures. wait() is the shutdown barrier: the
application lifespan calls shutdown() after the server stops accepting
requests so queued emails still go out before the process exits.

Detached work is not tied to request cancellation -- a client disconnecting
does not cancel anything submitted here.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures

logger = logging.getLogger("marquee.background")


class BackgroundRunner:
    """Thread-pool runner for best-effort tasks.

    Usage:
        runner = BackgroundRunner()
        runner.run(mailer.send, user.email, "user_welcome.tmpl", data)
        runner.shutdown()
    """

    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="marquee-bg")
        self._lock = threading.Lock()
        self._pending: set[Future] = set()
        self._closed = False

    def run(self, fn, *args, **kwargs) -> Future:
        """Submit fn(*args, **kwargs) for detached execution."""
        with self._lock:
            if self._closed:
                raise RuntimeError("BackgroundRunner has been shut down")
            future = self._executor.submit(self._supervise, fn, *args, **kwargs)
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    @staticmethod
    def _supervise(fn, *args, **kwargs) -> None:
        try:
            fn(*args, **kwargs)
        except Exception:
            logger.exception("Background task %s failed", getattr(fn, "__qualname__", repr(fn)))

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until every task submitted so far has finished.

        Returns False if the timeout expired with work still running.
        """
        with self._lock:
            snapshot = list(self._pending)
        _, not_done = wait_futures(snapshot, timeout=timeout)
        return not not_done

    def shutdown(self, timeout: float | None = None) -> None:
        with self._lock:
            self._closed = True
        logger.info("Completing background tasks (%d pending)", self.pending)
        self.wait(timeout)
        self._executor.shutdown(wait=timeout is None)
