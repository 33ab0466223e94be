"""
Provisioning contract models — what flows between orchestrator and adapters.

    validate(raw)   → ValidatedInput
    plan(input)     → Plan (list of Actions, nothing mutated)
    apply(input)    → Result

These shapes are the wire format for every caller (queue worker, HTTP
handler, CLI, tests), so field names are fixed.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ActionType = Literal["create", "update", "assign", "delete"]
ResultStatus = Literal["success", "partial", "error", "pending"]

RESULT_STATUSES: tuple[str, ...] = ("success", "pending", "partial", "error")


class ValidatedInput(BaseModel):
    """Normalized, defaulted input for one provider.

    Only ``Provisioner.validate`` produces these.
    """

    model_config = ConfigDict(frozen=True)

    provider: str
    data: dict[str, Any] = Field(default_factory=dict)


class Action(BaseModel):
    """One intended, externally observable mutation."""

    type: ActionType
    resource: str
    details: str
    required: bool = False


class Plan(BaseModel):
    """Intended mutations for one provider, computed without side effects."""

    provider: str
    actions: list[Action] = Field(default_factory=list)
    estimated_time: int | None = None     # seconds
    estimated_cost: float | None = None
    dependencies: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.actions

    def first(self, resource: str) -> Action | None:
        """First action touching ``resource``, if any."""
        for action in self.actions:
            if action.resource == resource:
                return action
        return None

    def summary(self) -> list[str]:
        return [f"{a.type} {a.resource}: {a.details}" for a in self.actions]


class Result(BaseModel):
    """Authoritative record of what an ``apply`` call achieved."""

    provider: str
    status: ResultStatus = "success"
    external_ids: dict[str, str] = Field(default_factory=dict)
    external_links: dict[str, str] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    raw_response: Any = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @property
    def failed(self) -> bool:
        return self.status == "error"

    @classmethod
    def error(cls, provider: str, *errors: str, **kwargs: Any) -> Result:
        """Create an error result."""
        return cls(provider=provider, status="error", errors=list(errors), **kwargs)

    @classmethod
    def pending(cls, provider: str, reason: str = "", **kwargs: Any) -> Result:
        """Create a result for work that has not run (yet)."""
        warnings = [reason] if reason else []
        return cls(provider=provider, status="pending", warnings=warnings, **kwargs)
