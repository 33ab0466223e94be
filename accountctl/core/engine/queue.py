"""
JobQueue — in-process work queue for provisioning jobs.

Delivers ``(job_id, config)`` to a handler on a small pool of worker
threads. The handler owns the job's status transitions; the queue only
steps in when the handler itself raises, marking the job ``failed``.

Thread safety model
───────────────────
- ``queue.Queue`` carries work items between ``submit()`` and workers.
- ``_lock`` protects ``_cancel_events`` and ``_running``.
- Cancellation is cooperative: ``cancel()`` sets the job's Event and
  the handler decides what still runs (in-flight vendor calls finish).
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from typing import Any

from accountctl.core.errors import describe_exception
from accountctl.core.persistence.jobs import JobNotFoundError, JobStateError, JobStore

logger = logging.getLogger(__name__)

JobHandler = Callable[[str, dict[str, Any], threading.Event], Any]

_STOP = object()


class JobQueue:
    """Worker-thread queue feeding jobs to a handler.

    Parameters
    ----------
    handler : JobHandler
        Called as ``handler(job_id, config, cancel_event)``.
    store : JobStore
        Used to mark jobs ``failed`` when the handler raises.
    workers : int
        Number of worker threads.
    """

    def __init__(self, handler: JobHandler, store: JobStore, *, workers: int = 2) -> None:
        self._handler = handler
        self._store = store
        self._workers = max(1, workers)
        self._queue: queue.Queue[Any] = queue.Queue()
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()
        self._cancel_events: dict[str, threading.Event] = {}
        self._running: set[str] = set()

    # ── Lifecycle ───────────────────────────────────────────────

    @property
    def started(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        if self.started:
            return
        self._threads = [
            threading.Thread(target=self._work, name=f"job-worker-{i}", daemon=True)
            for i in range(self._workers)
        ]
        for thread in self._threads:
            thread.start()
        logger.debug("JobQueue started with %d worker(s)", self._workers)

    def stop(self, timeout: float | None = None) -> None:
        """Stop after the queued work drains."""
        for _ in self._threads:
            self._queue.put(_STOP)
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.debug("JobQueue stopped")

    def join(self) -> None:
        """Block until every submitted job has been handled."""
        self._queue.join()

    # ── Work ────────────────────────────────────────────────────

    def submit(self, job_id: str, config: dict[str, Any]) -> None:
        with self._lock:
            self._cancel_events.setdefault(job_id, threading.Event())
        self._queue.put((job_id, config))
        logger.debug("Job %s queued", job_id)

    def cancel(self, job_id: str) -> bool:
        """Signal cancellation. Returns False if the job is not queued or running."""
        with self._lock:
            event = self._cancel_events.get(job_id)
        if event is None:
            return False
        event.set()
        return True

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> list[str]:
        with self._lock:
            return sorted(self._running)

    def _work(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                job_id, config = item
                self._handle(job_id, config)
            finally:
                self._queue.task_done()

    def _handle(self, job_id: str, config: dict[str, Any]) -> None:
        with self._lock:
            event = self._cancel_events.setdefault(job_id, threading.Event())
            self._running.add(job_id)
        try:
            self._handler(job_id, config, event)
        except Exception as e:
            logger.exception("Job %s handler raised", job_id)
            try:
                self._store.update_status(job_id, "failed", error=describe_exception(e))
            except (JobNotFoundError, JobStateError) as store_error:
                logger.error("Cannot mark job %s failed: %s", job_id, store_error)
        finally:
            with self._lock:
                self._running.discard(job_id)
                self._cancel_events.pop(job_id, None)
