"""
Provisioning use case — the job lifecycle around the orchestrator.

This is what the CLI and the web API call. It owns the caller side of
the orchestrator contract:

    payload → ProvisioningRequest → Job(pending) → queue
            → Job(running) → Orchestrator.run → Job(completed|failed)
            → audit entry

Job status follows the reconciled outcome: ``error`` → failed,
anything else → completed. A job cancelled mid-run stays cancelled.

Scheduled requests take a detour: Job(pending, scheduleTime) waits for
the Scheduler (or ``execute_job`` / ``run_job``) to release it. Their
unredacted payload is held in memory until then; a job whose secrets
did not survive a restart fails instead of running with masked values.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from accountctl.adapters.base import format_validation_errors
from accountctl.adapters.factory import build_registry
from accountctl.adapters.registry import ProvisionerRegistry
from accountctl.core.config.catalog import Catalog
from accountctl.core.config.loader import Settings
from accountctl.core.engine.orchestrator import Orchestrator, PlanPreview, ProvisioningReport
from accountctl.core.engine.queue import JobQueue
from accountctl.core.engine.scheduler import Scheduler
from accountctl.core.errors import ValidationError
from accountctl.core.models.job import Job, JobStatus
from accountctl.core.models.request import ProvisioningRequest
from accountctl.core.persistence.audit import AuditEntry, AuditWriter
from accountctl.core.persistence.jobs import JobStateError, JobStore
from accountctl.core.security.redaction import contains_redacted

logger = logging.getLogger(__name__)


def parse_request(payload: Mapping[str, Any]) -> ProvisioningRequest:
    """Build a request from a native or wizard payload.

    Raises:
        ValidationError: With one message per problem.
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be a JSON object")
    try:
        return ProvisioningRequest.from_payload(dict(payload))
    except PydanticValidationError as e:
        problems = format_validation_errors(e)
        raise ValidationError("; ".join(problems), errors=problems) from e


def job_status_for(overall: str) -> JobStatus:
    return "failed" if overall == "error" else "completed"


def _failure_summary(report: ProvisioningReport) -> str | None:
    failed = [app for app, r in report.per_app.items() if r.status == "error"]
    if not failed:
        return None
    return f"{len(failed)} app(s) failed: {', '.join(failed)}"


class ProvisioningService:
    """Job-oriented facade over the orchestrator, job store and audit ledger."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        store: JobStore,
        audit: AuditWriter,
        *,
        queue_workers: int = 2,
        schedule_interval: float = 30.0,
        catalog: Catalog | None = None,
    ):
        self.orchestrator = orchestrator
        self.catalog = catalog or Catalog()
        self.store = store
        self.audit = audit
        self.queue = JobQueue(self.process_job, store, workers=queue_workers)
        self.scheduler = Scheduler(store, self._dispatch, interval=schedule_interval)
        self._held: dict[str, dict[str, Any]] = {}
        self._held_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        root: Path | None = None,
        mock: bool = False,
        environ: Mapping[str, str] | None = None,
        registry: ProvisionerRegistry | None = None,
    ) -> ProvisioningService:
        """Wire up a service from settings and environment credentials."""
        state_dir = settings.state_path(root)
        if registry is None:
            registry = build_registry(settings, os.environ if environ is None else environ,
                                      mock=mock)
        orchestrator = Orchestrator(
            registry,
            timeout=settings.app_timeout,
            max_workers=settings.max_workers,
        )
        return cls(
            orchestrator,
            JobStore(state_dir=state_dir),
            AuditWriter(state_dir=state_dir),
            queue_workers=settings.queue_workers,
            schedule_interval=settings.schedule_interval,
            catalog=settings.catalog,
        )

    @property
    def registry(self) -> ProvisionerRegistry:
        return self.orchestrator.registry

    # ── Read-only operations ────────────────────────────────────

    def validate_request(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        request = parse_request(payload)
        apps = self.orchestrator.validate(
            request.employee, request.applications, operation=request.operation
        )
        return {"valid": all(a["valid"] for a in apps.values()), "applications": apps}

    def plan_request(self, payload: Mapping[str, Any]) -> PlanPreview:
        request = parse_request(payload)
        return self.orchestrator.plan(
            request.employee, request.applications, operation=request.operation
        )

    def providers(self) -> list[dict[str, Any]]:
        """Metadata for every known provider, registered or not."""
        out = []
        for name, status in self.registry.provider_status().items():
            provisioner = self.registry.get(name)
            info = provisioner.describe() if provisioner else {"id": name, "name": name}
            info.update({"registered": status["registered"], "available": status["available"]})
            out.append(info)
        return out

    def get_job(self, job_id: str) -> Job:
        return self.store.get(job_id)

    def list_jobs(self, status: JobStatus | None = None, limit: int | None = None) -> list[Job]:
        return self.store.list(status=status, limit=limit)

    # ── Job lifecycle ───────────────────────────────────────────

    def start(self) -> None:
        """Start the worker threads and the scheduler (long-running servers)."""
        self.queue.start()
        self.scheduler.start()

    def create_job(self, payload: Mapping[str, Any], *, enqueue: bool = True) -> Job:
        """Validate the request shape, persist a pending job and queue it.

        A request with a ``scheduleTime`` is persisted but not queued; the
        scheduler releases it when due.

        Raises:
            ValidationError: Malformed request, or a schedule time that
                has already passed (no job is created).
        """
        request = parse_request(payload)
        when = request.schedule_time
        if when is not None and when <= datetime.now(UTC):
            raise ValidationError("Schedule time must be in the future")

        job = self.store.create(request.model_dump(mode="json", by_alias=True),
                                schedule_time=when)
        if job.scheduled:
            with self._held_lock:
                self._held[job.id] = dict(payload)
            logger.info("Job %s scheduled for %s", job.id, job.schedule_time)
            if enqueue:
                self.start()
        elif enqueue:
            self.queue.start()
            self.queue.submit(job.id, dict(payload))
        return job

    def process_job(
        self,
        job_id: str,
        config: Mapping[str, Any],
        cancel_event: threading.Event | None = None,
    ) -> ProvisioningReport | None:
        """Run one job to completion. Returns None if it was cancelled before starting.

        Raises:
            JobStateError: The job is scheduled and has not been released.
        """
        job = self.store.get(job_id)
        if job.status == "cancelled":
            logger.info("Job %s cancelled before start", job_id)
            return None
        if job.released_at is None:
            raise JobStateError(f"Job {job_id} is scheduled for {job.schedule_time}")

        self.store.update_status(job_id, "running")
        request = parse_request(config)
        report = self.orchestrator.run_request(
            request, cancel_event=cancel_event, operation_id=job_id
        )

        result = report.to_dict()
        self.store.update_status(
            job_id,
            job_status_for(report.overall),
            result=result,
            error=_failure_summary(report),
        )
        self.audit.write(AuditEntry(
            job_id=job_id,
            operation_id=report.operation_id,
            operation=report.operation,
            email=request.employee.work_email,
            status=report.overall,
            apps=list(report.per_app),
            summary=report.summary,
            duration_ms=report.duration_ms,
            errors=[f"{app}: {e}" for app, r in report.per_app.items() for e in r.errors],
            request=request.model_dump(mode="json", by_alias=True),
            response=result,
        ))
        return report

    def run_sync(
        self,
        payload: Mapping[str, Any],
        cancel_event: threading.Event | None = None,
    ) -> tuple[Job, ProvisioningReport | None]:
        """Create a job and process it in the calling thread.

        A scheduled request is only persisted: the report is None and the
        job stays pending.
        """
        job = self.create_job(payload, enqueue=False)
        if job.scheduled:
            return job, None
        report = self.process_job(job.id, payload, cancel_event)
        return self.store.get(job.id), report

    def cancel_job(self, job_id: str) -> Job:
        """Cancel a pending or running job. Applies already in flight finish."""
        job = self.store.cancel(job_id)
        self.queue.cancel(job_id)
        with self._held_lock:
            self._held.pop(job_id, None)
        return job

    # ── Scheduled jobs ──────────────────────────────────────────

    def execute_job(self, job_id: str) -> Job:
        """Release a scheduled job now and queue it, ahead of its time.

        Raises:
            JobNotFoundError: Unknown id.
            JobStateError: Not pending, or already released.
        """
        job = self.store.release(job_id)
        self._dispatch(job)
        return self.store.get(job_id)

    def run_job(self, job_id: str) -> tuple[Job, ProvisioningReport | None]:
        """Release a scheduled job now and run it in the calling thread."""
        job = self.store.release(job_id)
        payload = self._payload_for(job)
        report = None if payload is None else self.process_job(job_id, payload)
        return self.store.get(job_id), report

    def run_due_jobs(self) -> list[tuple[Job, ProvisioningReport | None]]:
        """Run every job whose schedule time has passed, in the calling thread."""
        ran = []
        for job in self.store.due():
            try:
                ran.append(self.run_job(job.id))
            except JobStateError as e:
                logger.debug("Skipping job %s: %s", job.id, e)
        return ran

    def _dispatch(self, job: Job) -> None:
        payload = self._payload_for(job)
        if payload is None:
            return
        self.queue.start()
        self.queue.submit(job.id, payload)

    def _payload_for(self, job: Job) -> dict[str, Any] | None:
        """The payload a released job runs with; fails the job if it cannot run."""
        with self._held_lock:
            payload = self._held.pop(job.id, None)
        if payload is not None:
            return payload
        if contains_redacted(job.config):
            error = "Scheduled request carried secrets that were not kept; submit it again"
            logger.warning("Job %s: %s", job.id, error)
            self.store.update_status(job.id, "failed", error=error)
            return None
        return job.config

    def shutdown(self) -> None:
        self.scheduler.stop(timeout=5)
        self.queue.stop(timeout=5)
