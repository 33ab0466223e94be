"""
Apply bookkeeping — turns a sequence of vendor steps into one Result.

An apply is one primary step (the user identity) followed by auxiliary
steps (licenses, groups, channels…). Failure classification:

    primary fails              → status=error, stop
    required step fails        → errors, status=error
    other step fails           → errors, status=partial
    advisory step fails        → warnings, status=partial
    step raises StepWarning    → warnings, status=partial
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable

from accountctl.core.errors import describe_exception
from accountctl.core.models.provisioning import Result

logger = logging.getLogger(__name__)

DEFAULT_STEP_WORKERS = 4


class StepWarning(Exception):
    """A step could not complete but the account is still usable."""


@dataclass
class Step:
    """One auxiliary mutation inside an apply."""

    name: str
    func: Callable[[], Any]
    required: bool = False
    advisory: bool = False


@dataclass
class ApplyOutcome:
    """Accumulates the effects of one apply call."""

    provider: str
    external_ids: dict[str, str] = field(default_factory=dict)
    external_links: dict[str, str] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)
    primary_failed: bool = False
    required_failed: bool = False

    def fail(self, step: str, exc: BaseException) -> Result:
        """Record a primary-step failure and return the final Result."""
        logger.warning("%s: %s failed: %s", self.provider, step, exc)
        self.primary_failed = True
        self.errors.append(f"{step}: {describe_exception(exc)}")
        return self.to_result()

    def run(self, step: Step) -> Any:
        """Run one step, recording its failure. Returns the step's value or None."""
        value, kind, message = self._attempt(step)
        self._record(step, kind, message)
        return value

    def run_all(self, steps: list[Step], *, concurrent: bool = False,
                max_workers: int = DEFAULT_STEP_WORKERS) -> None:
        """Run independent steps, optionally on a thread pool.

        Failures are recorded in step order regardless of completion order.
        """
        if not steps:
            return
        if not concurrent or len(steps) == 1:
            for step in steps:
                self.run(step)
            return

        with ThreadPoolExecutor(max_workers=min(max_workers, len(steps))) as pool:
            attempts = list(pool.map(self._attempt, steps))
        for step, (_, kind, message) in zip(steps, attempts):
            self._record(step, kind, message)

    def _attempt(self, step: Step) -> tuple[Any, str, str]:
        try:
            return step.func(), "ok", ""
        except StepWarning as e:
            return None, "warning", str(e)
        except Exception as e:
            logger.warning("%s: step %s failed: %s", self.provider, step.name, e)
            return None, "error", describe_exception(e)

    def _record(self, step: Step, kind: str, message: str) -> None:
        if kind == "ok":
            return
        entry = f"{step.name}: {message}"
        if kind == "warning" or step.advisory:
            self.warnings.append(entry)
            return
        self.errors.append(entry)
        if step.required:
            self.required_failed = True

    @property
    def status(self) -> str:
        if self.primary_failed or self.required_failed:
            return "error"
        if self.errors or self.warnings:
            return "partial"
        return "success"

    def to_result(self) -> Result:
        return Result(
            provider=self.provider,
            status=self.status,
            external_ids=dict(self.external_ids),
            external_links=dict(self.external_links),
            errors=list(self.errors),
            warnings=list(self.warnings),
            metadata=dict(self.metadata),
            raw_response=self.raw or None,
        )
