"""
Job model — a persisted provisioning request and its lifecycle.

Jobs are created by the job store before the orchestrator runs and
their status is written by the orchestrator's caller, never by an
adapter.

    pending → running → completed | failed
    pending | running → cancelled

A job with a ``schedule_time`` stays pending until the scheduler (or an
operator asking to run it now) releases it to the queue.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

JobStatus = Literal["pending", "running", "completed", "failed", "cancelled"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Job(BaseModel):
    """One provisioning job as seen by the queue and the operator."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    config: dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = "pending"
    result: dict[str, Any] | None = None
    error: str | None = None
    schedule_time: str | None = None
    released_at: str | None = None
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def scheduled(self) -> bool:
        return self.schedule_time is not None

    def is_due(self, now: datetime) -> bool:
        """Pending, not yet released, and its schedule time has come."""
        if self.status != "pending" or self.released_at is not None or not self.scheduled:
            return False
        return datetime.fromisoformat(self.schedule_time) <= now

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()
