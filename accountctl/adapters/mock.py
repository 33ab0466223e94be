"""
Mock provisioner — stand-in for any vendor adapter.

Validates input with the real per-provider config model, so a mock run
rejects exactly what a live run would, but never leaves the process.
Used by ``--mock`` runs and by tests.
"""

from __future__ import annotations

import hashlib
from typing import Any

from accountctl.adapters.base import Provisioner
from accountctl.core.models.configs import CONFIG_MODELS
from accountctl.core.models.provisioning import Action, Plan, Result, ValidatedInput


def _fake_id(provider: str, email: str) -> str:
    """Stable per (provider, email), so repeated applies report the same id."""
    return hashlib.sha256(f"{provider}:{email}".encode()).hexdigest()[:16]


class MockProvisioner(Provisioner):
    """Provisioner double.

    By default every apply succeeds. Individual behaviour can be
    configured with ``set_result``, ``set_failure`` and ``set_exception``.
    """

    def __init__(self, provider: str, available: bool = True):
        self._name = provider
        self._available = available
        self.config_model = CONFIG_MODELS[provider]
        self.display_name = f"{provider} (mock)"
        self._result: Result | None = None
        self._exception: BaseException | None = None
        self._call_log: list[tuple[str, ValidatedInput]] = []
        self._seen: set[str] = set()

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[tuple[str, ValidatedInput]]:
        """(phase, input) for every plan/apply call received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def is_available(self) -> bool:
        return self._available

    def set_result(self, result: Result) -> None:
        self._result = result

    def set_failure(self, error: str = "Mock failure") -> None:
        self._result = Result.error(self._name, error)

    def set_exception(self, exc: BaseException) -> None:
        """Make apply raise, to exercise the orchestrator's failure boundary."""
        self._exception = exc

    def plan(self, validated: ValidatedInput) -> Plan:
        self._call_log.append(("plan", validated))
        email = validated.data.get("workEmail", "")
        kind = "update" if email in self._seen else "create"
        return Plan(
            provider=self._name,
            actions=[Action(type=kind, resource="user", required=True,
                            details=f"[mock] {kind} {email}")],
            estimated_time=0,
        )

    def apply(self, validated: ValidatedInput) -> Result:
        self._call_log.append(("apply", validated))
        if self._exception is not None:
            raise self._exception
        if self._result is not None:
            return self._result.model_copy(deep=True)

        email = validated.data.get("workEmail", "")
        created = email not in self._seen
        self._seen.add(email)
        metadata: dict[str, Any] = {"email": email, "created": created, "mock": True}
        return Result(
            provider=self._name,
            status="success",
            external_ids={"userId": _fake_id(self._name, email)},
            metadata=metadata,
        )

    def reset(self) -> None:
        """Clear call log and configured behaviour."""
        self._call_log.clear()
        self._seen.clear()
        self._result = None
        self._exception = None
