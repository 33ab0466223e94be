"""
Provisioning request — one employee, one operation, N applications.

The request keeps each application's config as a raw mapping: typing
happens per provider inside ``Provisioner.validate``, so one malformed
application config fails that application alone, not the request.

A request may carry a ``scheduleTime``: the job then waits, pending,
until that moment. Times without a UTC offset are read as UTC.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, Field, field_validator, model_validator

from accountctl.core.models.configs import (
    GOOGLE_WORKSPACE,
    JIRA,
    MICROSOFT_365,
    SLACK,
    ZOOM,
    CamelModel,
    Operation,
    normalize_email,
)

# Wizard payload keys → provider ids
_LEGACY_APP_KEYS = {
    "googleWorkspace": GOOGLE_WORKSPACE,
    "microsoft365": MICROSOFT_365,
    "slack": SLACK,
    "jira": JIRA,
    "zoom": ZOOM,
}


class Employee(CamelModel):
    """The person whose accounts are being managed."""

    full_name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    work_email: str = Field(
        validation_alias=AliasChoices("workEmail", "work_email", "email"),
        serialization_alias="workEmail",
    )
    personal_email: str | None = None
    department: str | None = None
    job_title: str | None = None
    manager_email: str | None = None

    @field_validator("work_email")
    @classmethod
    def _work_email(cls, value: str) -> str:
        return normalize_email(value) or value

    @field_validator("personal_email", "manager_email")
    @classmethod
    def _optional_email(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return normalize_email(value)

    @model_validator(mode="after")
    def _derive_full_name(self) -> Employee:
        if not self.full_name:
            joined = " ".join(p.strip() for p in (self.first_name, self.last_name) if p)
            self.full_name = joined or None
        return self

    def as_input(self) -> dict[str, Any]:
        """Fields shared with every application config."""
        data = self.model_dump(
            by_alias=True,
            exclude_none=True,
            exclude={"first_name", "last_name", "personal_email"},
        )
        return data


class ProvisioningRequest(CamelModel):
    """What the operator asked for."""

    employee: Employee
    operation: Operation = "provision"
    applications: dict[str, dict[str, Any]] = Field(min_length=1)
    schedule_time: datetime | None = None

    @field_validator("applications", mode="before")
    @classmethod
    def _list_of_apps(cls, value: Any) -> Any:
        # ["slack", "zoom"] means "these apps, all defaults"
        if isinstance(value, list):
            return {str(app): {} for app in value}
        if isinstance(value, dict):
            return {k: (v if isinstance(v, dict) else {}) for k, v in value.items()}
        return value

    @field_validator("schedule_time")
    @classmethod
    def _aware_schedule(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def app_ids(self) -> list[str]:
        return list(self.applications)

    def app_input(self, app_id: str) -> dict[str, Any]:
        """Employee fields + operation + the application's own config."""
        merged: dict[str, Any] = self.employee.as_input()
        merged["operation"] = self.operation
        merged.update(self.applications.get(app_id, {}))
        return merged

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ProvisioningRequest:
        """Build a request from either the native or the wizard payload shape."""
        if "employee" in data:
            return cls.model_validate(data)
        if "userInfo" in data or "userEmail" in data:
            return cls.model_validate(_from_wizard_payload(data))
        return cls.model_validate(data)


def _from_wizard_payload(data: dict[str, Any]) -> dict[str, Any]:
    """Translate the onboarding/termination wizard payloads."""
    if "userEmail" in data:
        employee = {
            "workEmail": data.get("userEmail", ""),
            "managerEmail": data.get("managerEmail"),
        }
        operation = "deactivate"
    else:
        info = data.get("userInfo") or {}
        employee = {
            "firstName": info.get("firstName"),
            "lastName": info.get("lastName"),
            "workEmail": info.get("email", ""),
        }
        operation = "provision"

    selected = data.get("selectedApps") or {}
    applications: dict[str, dict[str, Any]] = {}
    for key, app_id in _LEGACY_APP_KEYS.items():
        if not selected.get(key):
            continue
        section = data.get(key) or {}
        applications[app_id] = _translate_section(app_id, section)

    translated: dict[str, Any] = {
        "employee": employee, "operation": operation, "applications": applications,
    }
    if data.get("scheduleTime"):
        translated["scheduleTime"] = data["scheduleTime"]
    return translated


def _translate_section(app_id: str, section: dict[str, Any]) -> dict[str, Any]:
    if app_id == GOOGLE_WORKSPACE:
        out: dict[str, Any] = {}
        if section.get("organizationalUnit"):
            out["primaryOrgUnit"] = section["organizationalUnit"]
        if section.get("selectedGroups"):
            out["groups"] = section["selectedGroups"]
        return out
    if app_id == MICROSOFT_365:
        out = {}
        if section.get("selectedLicenses"):
            out["licenseSkus"] = section["selectedLicenses"]
        if section.get("selectedGroups"):
            out["groups"] = section["selectedGroups"]
        return out
    return dict(section)
