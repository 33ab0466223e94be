"""
Provisioner base — the contract between the orchestrator and a vendor.

Every adapter implements the same three-phase protocol:

    validate(raw)   → ValidatedInput   (pure, never touches the vendor)
    plan(input)     → Plan             (read-only vendor calls)
    apply(input)    → Result           (mutates vendor state, idempotent)

The orchestrator only talks to adapters through this protocol, never
directly to vendor clients.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar

from pydantic import ValidationError as PydanticValidationError

from accountctl.core.errors import ValidationError
from accountctl.core.models.configs import AppConfigBase
from accountctl.core.models.provisioning import Plan, Result, ValidatedInput

_BASE_FIELDS = frozenset(AppConfigBase.model_fields)


def format_validation_errors(exc: PydanticValidationError) -> list[str]:
    """Flatten pydantic errors into ``"field: message"`` strings."""
    messages = []
    for err in exc.errors():
        msg = err.get("msg", "invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        loc = ".".join(str(part) for part in err.get("loc", ()))
        messages.append(f"{loc}: {msg}" if loc else msg)
    return messages


class Provisioner(ABC):
    """Abstract base class for all vendor adapters.

    ``validate`` is implemented here from ``config_model`` plus the
    ``check_config`` hook; ``plan`` and ``apply`` are vendor specific.

    To create a new adapter:
        1. Subclass Provisioner and set ``config_model``
        2. Implement name, plan, apply (and check_config if needed)
        3. Register it in the ProvisionerRegistry
    """

    config_model: ClassVar[type[AppConfigBase]]
    display_name: ClassVar[str] = ""
    description: ClassVar[str] = ""

    @property
    @abstractmethod
    def name(self) -> str:
        """The provider identifier (e.g., 'google-workspace', 'slack')."""

    def is_available(self) -> bool:
        """Whether the adapter has what it needs to reach its vendor."""
        return True

    # ── Validate ────────────────────────────────────────────────

    def validate(self, raw: dict[str, Any]) -> ValidatedInput:
        """Normalize and default ``raw`` into this provider's input.

        Raises:
            ValidationError: With every problem found, not just the first.
        """
        payload = dict(raw or {})
        payload["provider"] = self.name
        try:
            config = self.config_model.model_validate(payload)
        except PydanticValidationError as e:
            problems = format_validation_errors(e)
            raise ValidationError(
                "; ".join(problems), provider=self.name, errors=problems
            ) from e

        problems = self.check_config(config)
        if problems:
            raise ValidationError("; ".join(problems), provider=self.name, errors=problems)

        return ValidatedInput(
            provider=self.name,
            data=config.model_dump(mode="json", by_alias=True),
        )

    def check_config(self, config: Any) -> list[str]:
        """Cross-field or catalog rules the model cannot express.

        Returns:
            A list of problems; empty when the config is acceptable.
        """
        return []

    def load_config(self, validated: ValidatedInput) -> Any:
        """Re-hydrate the typed config from a ValidatedInput.

        Raises:
            ValidationError: If the input was validated by another provider.
        """
        if validated.provider != self.name:
            raise ValidationError(
                f"Input was validated for '{validated.provider}', not '{self.name}'",
                provider=self.name,
            )
        return self.config_model.model_validate(validated.data)

    # ── Plan / Apply ────────────────────────────────────────────

    @abstractmethod
    def plan(self, validated: ValidatedInput) -> Plan:
        """Compute the intended mutations without performing any."""

    @abstractmethod
    def apply(self, validated: ValidatedInput) -> Result:
        """Bring vendor state in line with the input.

        Safe to call repeatedly with the same input. Step failures are
        reported in the Result, not raised.
        """

    # ── Metadata ────────────────────────────────────────────────

    def describe(self) -> dict[str, Any]:
        """Provider metadata for catalogs and the web API."""
        defaults: dict[str, Any] = {}
        for field_name, field in self.config_model.model_fields.items():
            if field_name in _BASE_FIELDS or field.is_required():
                continue
            key = field.serialization_alias or field.alias or field_name
            defaults[key] = field.get_default(call_default_factory=True)

        return {
            "id": self.name,
            "name": self.display_name or self.name,
            "description": self.description,
            "available": self.is_available(),
            "requiredFields": ["fullName", "workEmail"],
            "defaults": defaults,
        }

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
