"""
Job store — provisioning jobs persisted as one JSON document.

Jobs live in .state/jobs.json. Writes are atomic (write to temp file,
then rename) so a crash mid-write never corrupts the store. Configs are
stored with secrets redacted; the unredacted config only ever travels
in memory through the queue.

Status transitions:

    pending  → running | failed | cancelled
    running  → completed | failed | cancelled
    cancelled: a late completion records its result, status stays cancelled

Immediate jobs are released to the queue as they are created. Scheduled
jobs carry a ``schedule_time`` and are released once, either when due
or when an operator runs them early.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from accountctl.core.models.job import Job, JobStatus
from accountctl.core.security.redaction import redact

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".state"
DEFAULT_JOBS_FILE = "jobs.json"

_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"running", "failed", "cancelled"}),
    "running": frozenset({"completed", "failed", "cancelled"}),
    "completed": frozenset(),
    "failed": frozenset(),
    "cancelled": frozenset(),
}


class JobNotFoundError(LookupError):
    """No job with the given id."""


class JobStateError(ValueError):
    """The requested status change is not allowed from the job's state."""


class JobStore:
    """Thread-safe JSON-file job store."""

    def __init__(self, path: Path | None = None, state_dir: Path | None = None):
        if path is not None:
            self._path = path
        else:
            self._path = (state_dir or Path(DEFAULT_STATE_DIR)) / DEFAULT_JOBS_FILE
        self._lock = threading.RLock()
        self._jobs: dict[str, Job] = self._load()

    @property
    def path(self) -> Path:
        return self._path

    # ── Persistence ─────────────────────────────────────────────

    def _load(self) -> dict[str, Job]:
        if not self._path.is_file():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Cannot load jobs from %s: %s — starting empty", self._path, e)
            return {}

        jobs: dict[str, Job] = {}
        for raw in data.get("jobs", []) if isinstance(data, dict) else []:
            try:
                job = Job.model_validate(raw)
            except ValidationError as e:
                logger.warning("Skipping corrupt job record: %s", e)
                continue
            jobs[job.id] = job
        logger.debug("Loaded %d job(s) from %s", len(jobs), self._path)
        return jobs

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = {"jobs": [job.model_dump(mode="json") for job in self._jobs.values()]}
        content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"

        fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, prefix=".jobs_", suffix=".tmp")
        os.close(fd)
        tmp = Path(tmp_path)
        try:
            tmp.write_text(content, encoding="utf-8")
            tmp.replace(self._path)
        except Exception:
            tmp.unlink(missing_ok=True)
            logger.error("Failed to save jobs to %s", self._path)
            raise

    # ── Operations ──────────────────────────────────────────────

    def create(self, config: dict[str, Any], *, schedule_time: datetime | None = None) -> Job:
        """Persist a new pending job (config stored redacted).

        Without a ``schedule_time`` the job counts as released at once.
        """
        with self._lock:
            job = Job(config=redact(config))
            if schedule_time is None:
                job.released_at = job.created_at
            else:
                job.schedule_time = schedule_time.astimezone(UTC).isoformat()
            self._jobs[job.id] = job
            self._save()
        logger.info("Job %s created", job.id)
        return job.model_copy(deep=True)

    def get(self, job_id: str) -> Job:
        """Raises JobNotFoundError."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            return job.model_copy(deep=True)

    def list(self, status: JobStatus | None = None, limit: int | None = None) -> list[Job]:
        """Jobs newest first, optionally filtered by status."""
        with self._lock:
            jobs = [j for j in self._jobs.values() if status is None or j.status == status]
            jobs.sort(key=lambda j: j.created_at, reverse=True)
            if limit is not None:
                jobs = jobs[:limit]
            return [j.model_copy(deep=True) for j in jobs]

    def update_status(
        self,
        job_id: str,
        status: JobStatus,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> Job:
        """Move a job to ``status``, recording its (redacted) result.

        Raises:
            JobNotFoundError: Unknown id.
            JobStateError: Transition not allowed.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")

            if job.status == "cancelled" and status in ("completed", "failed"):
                # Best-effort cancel: in-flight work still reports back
                pass
            elif status != job.status and status not in _TRANSITIONS[job.status]:
                raise JobStateError(f"Job {job_id} cannot go from {job.status} to {status}")
            else:
                job.status = status

            if result is not None:
                job.result = redact(result)
            if error is not None:
                job.error = error
            job.touch()
            self._save()
            logger.debug("Job %s → %s", job_id, job.status)
            return job.model_copy(deep=True)

    def cancel(self, job_id: str) -> Job:
        """Mark a pending or running job cancelled.

        Raises:
            JobNotFoundError: Unknown id.
            JobStateError: Job already finished.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            if job.finished:
                raise JobStateError(f"Job {job_id} is already {job.status}")
            job.status = "cancelled"
            job.touch()
            self._save()
        logger.info("Job %s cancelled", job_id)
        return job.model_copy(deep=True)

    def due(self, now: datetime | None = None) -> list[Job]:
        """Scheduled jobs waiting to be released, earliest first."""
        now = now or datetime.now(UTC)
        with self._lock:
            jobs = [j for j in self._jobs.values() if j.is_due(now)]
            jobs.sort(key=lambda j: j.schedule_time or "")
            return [j.model_copy(deep=True) for j in jobs]

    def release(self, job_id: str) -> Job:
        """Hand a pending scheduled job over for execution, exactly once.

        Raises:
            JobNotFoundError: Unknown id.
            JobStateError: Not pending, or already released.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            if job.status != "pending":
                raise JobStateError(f"Job {job_id} is already {job.status}")
            if job.released_at is not None:
                raise JobStateError(f"Job {job_id} was already released")
            job.touch()
            job.released_at = job.updated_at
            self._save()
        logger.info("Job %s released (scheduled for %s)", job_id, job.schedule_time)
        return job.model_copy(deep=True)

    def count(self) -> int:
        with self._lock:
            return len(self._jobs)
