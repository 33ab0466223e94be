"""
Scheduler — releases scheduled jobs once their time has come.

A single daemon thread polls the job store every ``interval`` seconds
and hands each due job to ``dispatch`` (the service puts it on the
JobQueue). ``wake()`` forces an early poll.

Thread safety model
───────────────────
- ``JobStore.release`` is the claim: whichever of the poller and an
  operator's "run now" releases a job first owns it, the other gets
  JobStateError and skips it.
- ``_wake`` doubles as the sleep between polls; ``stop()`` sets it
  after ``_stop`` so the thread exits without waiting out the interval.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime

from accountctl.core.models.job import Job
from accountctl.core.persistence.jobs import JobNotFoundError, JobStateError, JobStore

logger = logging.getLogger(__name__)

Dispatch = Callable[[Job], None]


class Scheduler:
    """Poll the job store and release due jobs to ``dispatch``.

    Parameters
    ----------
    store : JobStore
        Source of scheduled jobs.
    dispatch : Dispatch
        Called with each released job, on the scheduler thread.
    interval : float
        Seconds between polls.
    """

    def __init__(self, store: JobStore, dispatch: Dispatch, *, interval: float = 30.0) -> None:
        self._store = store
        self._dispatch = dispatch
        self._interval = interval
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._wake = threading.Event()

    # ── Lifecycle ───────────────────────────────────────────────

    @property
    def started(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.started:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="job-scheduler", daemon=True)
        self._thread.start()
        logger.debug("Scheduler started (every %ss)", self._interval)

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None
        logger.debug("Scheduler stopped")

    def wake(self) -> None:
        self._wake.set()

    # ── Polling ─────────────────────────────────────────────────

    def run_due(self, now: datetime | None = None) -> list[str]:
        """Release and dispatch every job due at ``now``. Returns their ids."""
        released: list[str] = []
        for job in self._store.due(now or datetime.now(UTC)):
            try:
                job = self._store.release(job.id)
            except (JobNotFoundError, JobStateError) as e:
                logger.debug("Skipping job %s: %s", job.id, e)
                continue
            logger.info("Job %s is due (scheduled for %s)", job.id, job.schedule_time)
            self._dispatch(job)
            released.append(job.id)
        return released

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_due()
            except Exception:
                logger.exception("Scheduler poll failed")
            self._wake.wait(self._interval)
            self._wake.clear()
