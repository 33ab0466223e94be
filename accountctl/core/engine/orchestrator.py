"""
Provisioning orchestrator — drives every selected app through
validate → plan → apply and collects one Result per app.

Flow:
    request → per app (in parallel): validate → plan → apply → Result
            → join (with deadline) → reconcile → ProvisioningReport

Each app runs inside its own failure boundary: an exception, a
validation error or a timeout in one app becomes that app's error
Result and never affects its siblings.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable, Mapping
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

from accountctl.adapters.registry import ProvisionerRegistry
from accountctl.core.engine.reconciler import reconcile, summarize
from accountctl.core.errors import ValidationError, describe_exception
from accountctl.core.models.configs import Operation
from accountctl.core.models.provisioning import Plan, Result, ValidatedInput
from accountctl.core.models.request import Employee, ProvisioningRequest
from accountctl.core.security.redaction import redact

logger = logging.getLogger(__name__)

DEFAULT_APP_TIMEOUT = 120.0

# Seconds between checks while apps wait for a free worker
_QUEUE_POLL = 0.05

T = TypeVar("T")

_MARKERS = {"success": "✓", "partial": "◐", "pending": "⊘", "error": "✗"}


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{now}-{short}"


@dataclass
class ProvisioningReport:
    """Outcome of one orchestrated request."""

    operation_id: str = ""
    operation: str = "provision"
    per_app: dict[str, Result] = field(default_factory=dict)
    plans: dict[str, Plan] = field(default_factory=dict)
    duration_ms: int = 0

    @property
    def overall(self) -> str:
        return reconcile(self.per_app)

    @property
    def summary(self) -> dict[str, int]:
        return summarize(self.per_app)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operationId": self.operation_id,
            "operation": self.operation,
            "overall": self.overall,
            "summary": self.summary,
            "durationMs": self.duration_ms,
            "perApp": {app: r.model_dump(mode="json") for app, r in self.per_app.items()},
            "plans": {app: p.model_dump(mode="json") for app, p in self.plans.items()},
        }


@dataclass
class PlanPreview:
    """Plans for every app that validated, errors for the rest."""

    plans: dict[str, Plan] = field(default_factory=dict)
    errors: dict[str, list[str]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "plans": {app: p.model_dump(mode="json") for app, p in self.plans.items()},
            "errors": self.errors,
        }


class Orchestrator:
    """Fan-out/fan-in runner over a ProvisionerRegistry.

    Args:
        registry: Where adapters are resolved by app id.
        timeout: Seconds each app may run, counted from when a worker
            picks it up, before it is reported as timed out.
        max_workers: Thread pool size; defaults to one thread per app.
    """

    def __init__(
        self,
        registry: ProvisionerRegistry,
        *,
        timeout: float = DEFAULT_APP_TIMEOUT,
        max_workers: int | None = None,
    ):
        self.registry = registry
        self.timeout = timeout
        self.max_workers = max_workers

    # ── Entry points ────────────────────────────────────────────

    def run(
        self,
        employee: Employee | Mapping[str, Any],
        selections: Mapping[str, Mapping[str, Any]],
        *,
        operation: Operation = "provision",
        cancel_event: threading.Event | None = None,
        operation_id: str | None = None,
    ) -> ProvisioningReport:
        """Validate, plan and apply every selected app.

        Raises:
            ValueError: If no application is selected.
        """
        inputs = self._inputs(employee, selections, operation)
        report = ProvisioningReport(
            operation_id=operation_id or generate_operation_id(),
            operation=operation,
        )
        start = time.monotonic()
        logger.info("%s: %s %d app(s): %s", report.operation_id, operation,
                    len(inputs), ", ".join(inputs))

        outcomes = self._gather(
            {app: (lambda a=app, raw=raw: self._run_app(a, raw, cancel_event))
             for app, raw in inputs.items()},
            on_timeout=lambda app: (None, self._timed_out(app)),
        )
        for app, (plan, result) in outcomes.items():
            report.per_app[app] = result
            if plan is not None:
                report.plans[app] = plan
            logger.info("%s %s → %s", _MARKERS.get(result.status, "?"), app, result.status)

        report.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info("%s: overall %s (%dms)", report.operation_id, report.overall,
                    report.duration_ms)
        return report

    def run_request(self, request: ProvisioningRequest, **kwargs: Any) -> ProvisioningReport:
        return self.run(request.employee, request.applications,
                        operation=request.operation, **kwargs)

    def plan(
        self,
        employee: Employee | Mapping[str, Any],
        selections: Mapping[str, Mapping[str, Any]],
        *,
        operation: Operation = "provision",
    ) -> PlanPreview:
        """Validate and plan every selected app without applying anything."""
        inputs = self._inputs(employee, selections, operation)

        def timed_out(app: str) -> tuple[Plan | None, list[str]]:
            return None, [self._timed_out(app).errors[0]]

        outcomes = self._gather(
            {app: (lambda a=app, raw=raw: self._plan_app(a, raw)) for app, raw in inputs.items()},
            on_timeout=timed_out,
        )
        preview = PlanPreview()
        for app, (plan, errors) in outcomes.items():
            if plan is not None:
                preview.plans[app] = plan
            if errors:
                preview.errors[app] = errors
        return preview

    def validate(
        self,
        employee: Employee | Mapping[str, Any],
        selections: Mapping[str, Mapping[str, Any]],
        *,
        operation: Operation = "provision",
    ) -> dict[str, dict[str, Any]]:
        """Per-app validation report. Pure: no vendor is contacted."""
        report: dict[str, dict[str, Any]] = {}
        for app, raw in self._inputs(employee, selections, operation).items():
            try:
                validated = self._validate(app, raw)
            except ValidationError as e:
                report[app] = {"valid": False, "errors": list(e.errors)}
            else:
                report[app] = {"valid": True, "errors": [], "data": redact(validated.data)}
        return report

    # ── Per-app pipelines ───────────────────────────────────────

    def _validate(self, app: str, raw: dict[str, Any]) -> ValidatedInput:
        provisioner = self.registry.get(app)
        if provisioner is None:
            raise ValidationError(f"No provisioner registered for '{app}'", provider=app)
        return provisioner.validate(raw)

    def _run_app(
        self,
        app: str,
        raw: dict[str, Any],
        cancel_event: threading.Event | None,
    ) -> tuple[Plan | None, Result]:
        provisioner = self.registry.get(app)
        if provisioner is None:
            return None, Result.error(app, f"No provisioner registered for '{app}'")

        try:
            validated = provisioner.validate(raw)
        except Exception as e:
            logger.info("%s: validation failed: %s", app, e)
            return None, Result.error(app, describe_exception(e))

        try:
            plan = provisioner.plan(validated)
        except Exception as e:
            logger.error("%s: plan raised: %s", app, e)
            return None, Result.error(app, f"plan: {describe_exception(e)}")

        if cancel_event is not None and cancel_event.is_set():
            logger.info("%s: cancelled before apply", app)
            return plan, Result.pending(app, "Cancelled before apply")

        try:
            return plan, provisioner.apply(validated)
        except Exception as e:
            logger.error("%s: apply raised: %s", app, e)
            return plan, Result.error(app, describe_exception(e))

    def _plan_app(self, app: str, raw: dict[str, Any]) -> tuple[Plan | None, list[str]]:
        try:
            validated = self._validate(app, raw)
        except ValidationError as e:
            return None, [f"{e.label}: {msg}" for msg in e.errors]
        except Exception as e:
            return None, [describe_exception(e)]
        try:
            return self.registry.get(app).plan(validated), []
        except Exception as e:
            return None, [f"plan: {describe_exception(e)}"]

    # ── Fan-out / fan-in ────────────────────────────────────────

    def _inputs(
        self,
        employee: Employee | Mapping[str, Any],
        selections: Mapping[str, Mapping[str, Any]],
        operation: str,
    ) -> dict[str, dict[str, Any]]:
        if not selections:
            raise ValueError("At least one application must be selected")
        base = employee.as_input() if isinstance(employee, Employee) else dict(employee)
        return {
            app: {**base, "operation": operation, **dict(config or {})}
            for app, config in selections.items()
        }

    def _timed_out(self, app: str) -> Result:
        logger.warning("%s: no result within %.0fs", app, self.timeout)
        return Result.error(app, f"Timed out: no result within {self.timeout:.0f}s")

    def _gather(
        self,
        work: dict[str, Callable[[], T]],
        *,
        on_timeout: Callable[[str], T],
    ) -> dict[str, T]:
        """Run every callable concurrently; stragglers get ``on_timeout``.

        Each app's deadline starts when a worker picks it up, so apps
        queued behind a smaller pool get their full ``timeout``. Work that
        never starts is given up on once every wave could have used its
        full budget. Returns results in the key order of ``work``. Does
        not wait for timed-out work to finish.
        """
        pool_size = max(1, min(self.max_workers or len(work), len(work)))
        executor = ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="provision")
        started: dict[str, float] = {}

        def timed(app: str, fn: Callable[[], T]) -> Callable[[], T]:
            def call() -> T:
                started[app] = time.monotonic()
                return fn()
            return call

        futures = {app: executor.submit(timed(app, fn)) for app, fn in work.items()}
        waves = -(-len(work) // pool_size)
        hard_stop = time.monotonic() + self.timeout * waves
        results: dict[str, T] = {}
        pending = set(futures)
        try:
            while pending:
                now = time.monotonic()
                for app in list(pending):
                    future = futures[app]
                    begun = started.get(app)
                    if future.done():
                        results[app] = future.result()
                    elif now >= hard_stop or (begun is not None and now - begun >= self.timeout):
                        results[app] = on_timeout(app)
                    else:
                        continue
                    pending.discard(app)
                if not pending:
                    break
                deadlines = [started[a] + self.timeout for a in pending if a in started]
                if len(deadlines) < len(pending):
                    # Queued work: re-check soon for its start time
                    deadlines.append(now + _QUEUE_POLL)
                wait([futures[a] for a in pending],
                     timeout=max(0.0, min(min(deadlines), hard_stop) - now),
                     return_when=FIRST_COMPLETED)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return {app: results[app] for app in work}
