"""Bounded worker pool with a reject-on-saturation admission policy."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any

logger = logging.getLogger(__name__)


class PoolSaturatedError(RuntimeError):
    """All worker threads are busy and the admission queue is full."""


class PoolShutdownError(RuntimeError):
    """Submission to a pool that has been shut down."""


class BoundedWorkerPool:
    """ThreadPoolExecutor whose backlog is capped.

    At most ``max_threads`` callables run at once and at most ``max_queue``
    more wait for a thread. Submissions beyond that raise
    ``PoolSaturatedError`` instead of growing the executor's internal queue.

    Example:
        >>> pool = BoundedWorkerPool(max_threads=2, max_queue=0)
        >>> future = pool.submit(sum, [1, 2])
        >>> future.result()
        3
        >>> pool.shutdown(timeout=1.0)
        True
    """

    def __init__(self, max_threads: int = 5, max_queue: int = 100, name: str = "syncspine-worker"):
        if max_threads < 1:
            raise ValueError("max_threads must be at least 1")
        self.max_threads = max_threads
        self.max_queue = max_queue
        self._executor = ThreadPoolExecutor(max_workers=max_threads, thread_name_prefix=name)
        self._slots = threading.BoundedSemaphore(max_threads + max_queue)
        self._active: set[Future] = set()
        self._lock = threading.Lock()
        self._shutdown = False

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        if self._shutdown:
            raise PoolShutdownError("Worker pool has been shut down")
        if not self._slots.acquire(blocking=False):
            raise PoolSaturatedError(
                f"Worker pool saturated ({self.max_threads} threads, {self.max_queue} queued)"
            )
        try:
            future = self._executor.submit(fn, *args, **kwargs)
        except RuntimeError as e:
            self._slots.release()
            if self._shutdown:
                raise PoolShutdownError("Worker pool has been shut down") from e
            raise
        with self._lock:
            self._active.add(future)
        future.add_done_callback(self._release)
        return future

    def shutdown(self, timeout: float | None = None) -> bool:
        """Stop accepting work and wait up to ``timeout`` for in-flight work.

        Returns True when everything finished in time. Unfinished callables
        keep running on their threads but are no longer awaited.
        """
        self._shutdown = True
        with self._lock:
            pending = set(self._active)
        self._executor.shutdown(wait=False, cancel_futures=False)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        if not_done:
            logger.warning(
                "Worker pool shutdown timed out after %ss; abandoning %d running job(s)",
                timeout,
                len(not_done),
            )
            return False
        return True

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    @property
    def is_running(self) -> bool:
        return not self._shutdown

    def _release(self, future: Future) -> None:
        with self._lock:
            self._active.discard(future)
        self._slots.release()
