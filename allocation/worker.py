"""Background execution for long-running allocation operations.

Bulk ingest, archiving and store I/O can run off the caller's thread. The worker
has a single thread, so pool mutations submitted through it never interleave.
The caller is expected to disable conflicting commands while `busy` is True.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cancellation signal accepted by AllocationPool.ingest and ArchiveEngine.archive."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class BackgroundWorker:
    """
    Single-thread executor for allocation jobs.

    Usage:
        with BackgroundWorker() as worker:
            token = CancellationToken()
            future = worker.submit(pool.ingest, entries, cancel_event=token)
            future.result()
    """

    def __init__(self, name: str = "allocation"):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._lock = threading.Lock()
        self._pending = 0

    @property
    def busy(self) -> bool:
        """Whether a job is queued or running."""
        with self._lock:
            return self._pending > 0

    def _job_done(self, future: Future) -> None:
        with self._lock:
            self._pending -= 1
        if not future.cancelled() and future.exception() is not None:
            logger.error("Background job failed: %s", future.exception())

    def submit(self, fn: Callable, *args, **kwargs) -> Future:
        """Queue a job. Exceptions are re-raised from future.result()."""
        with self._lock:
            self._pending += 1
        try:
            future = self._executor.submit(fn, *args, **kwargs)
        except RuntimeError:
            with self._lock:
                self._pending -= 1
            raise
        future.add_done_callback(self._job_done)
        return future

    def shutdown(self, wait: bool = True, cancel_pending: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=cancel_pending)

    def __enter__(self) -> "BackgroundWorker":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown(wait=True)
