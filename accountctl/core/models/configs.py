"""
Per-provider configuration models — a tagged union keyed by ``provider``.

Each adapter validates the merged employee + application config against
its own variant. Field names are snake_case in Python and camelCase on
the wire (``primary_org_unit`` ↔ ``primaryOrgUnit``), which is also the
shape of ``ValidatedInput.data``.
"""

from __future__ import annotations

import re
from typing import Annotated, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Operation = Literal["provision", "deactivate"]

EMAIL_RE = re.compile(r'^[^\s@"\\]+@[^\s@"\\]+\.[^\s@"\\]+$')

# Operator-supplied passwords; generated ones follow core.security.passwords
MIN_CUSTOM_PASSWORD_LENGTH = 8

GOOGLE_WORKSPACE = "google-workspace"
MICROSOFT_365 = "microsoft-365"
SLACK = "slack"
JIRA = "jira"
ZOOM = "zoom"

PROVIDERS: tuple[str, ...] = (GOOGLE_WORKSPACE, MICROSOFT_365, SLACK, JIRA, ZOOM)


def normalize_email(value: str | None) -> str | None:
    """Trim and lower-case an email, rejecting anything not shaped like one."""
    if value is None:
        return None
    value = value.strip().lower()
    if not value:
        raise ValueError("email is required")
    if not EMAIL_RE.match(value):
        raise ValueError(f"Invalid email format: {value!r}")
    return value


def split_name(full_name: str) -> tuple[str, str]:
    """Split a display name into (given, family)."""
    parts = full_name.split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class AppConfigBase(CamelModel):
    """Fields every provider shares: who the account is for, and what to do."""

    provider: str
    full_name: str | None = None
    work_email: str
    operation: Operation = "provision"
    manager_email: str | None = None
    department: str | None = None
    job_title: str | None = None

    @field_validator("manager_email", mode="before")
    @classmethod
    def _blank_manager(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("work_email", "manager_email")
    @classmethod
    def _check_email(cls, value: str | None) -> str | None:
        return normalize_email(value)

    @field_validator("full_name")
    @classmethod
    def _strip_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return " ".join(value.split()) or None

    @model_validator(mode="after")
    def _require_name_for_provisioning(self) -> AppConfigBase:
        if self.operation == "provision" and not self.full_name:
            raise ValueError("fullName is required")
        return self

    @property
    def given_name(self) -> str:
        return split_name(self.full_name or "")[0]

    @property
    def family_name(self) -> str:
        return split_name(self.full_name or "")[1]

    @property
    def username(self) -> str:
        return self.work_email.split("@", 1)[0]

    @property
    def deactivating(self) -> bool:
        return self.operation == "deactivate"


class GoogleWorkspaceConfig(AppConfigBase):
    provider: Literal["google-workspace"] = GOOGLE_WORKSPACE
    primary_org_unit: str = "/"
    password_mode: Literal["auto", "custom"] = "auto"
    custom_password: str | None = None
    change_password_at_next_login: bool = False
    license_sku: str = "Google-Apps-For-Business"
    groups: list[str] = Field(default_factory=list)

    @field_validator("primary_org_unit")
    @classmethod
    def _org_unit_path(cls, value: str) -> str:
        value = value.strip() or "/"
        if not value.startswith("/"):
            raise ValueError("primaryOrgUnit must be an org unit path starting with '/'")
        return value

    @model_validator(mode="after")
    def _custom_password(self) -> GoogleWorkspaceConfig:
        if self.password_mode == "custom" and not self.deactivating:
            if not self.custom_password:
                raise ValueError("customPassword is required when passwordMode is 'custom'")
            if len(self.custom_password) < MIN_CUSTOM_PASSWORD_LENGTH:
                raise ValueError(
                    f"customPassword must be at least {MIN_CUSTOM_PASSWORD_LENGTH} characters"
                )
        return self


class Microsoft365Config(AppConfigBase):
    provider: Literal["microsoft-365"] = MICROSOFT_365
    usage_location: str = "US"
    license_skus: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("licenseSkus", "licenseSKUs", "licenses", "license_skus"),
        serialization_alias="licenseSkus",
    )
    service_plans: list[str] = Field(default_factory=list)
    groups: list[str] = Field(default_factory=list)
    temp_password: str | None = None
    require_password_change: bool = True
    office_location: str | None = None

    @field_validator("usage_location")
    @classmethod
    def _upper_location(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("temp_password")
    @classmethod
    def _temp_password_length(cls, value: str | None) -> str | None:
        if value and len(value) < MIN_CUSTOM_PASSWORD_LENGTH:
            raise ValueError(
                f"tempPassword must be at least {MIN_CUSTOM_PASSWORD_LENGTH} characters"
            )
        return value or None


class SlackConfig(AppConfigBase):
    provider: Literal["slack"] = SLACK
    user_role: Literal["member", "admin"] = "member"
    default_channels: list[str] = Field(default_factory=lambda: ["general"])
    user_groups: list[str] = Field(default_factory=list)

    @field_validator("default_channels")
    @classmethod
    def _strip_hash(cls, value: list[str]) -> list[str]:
        return [c.strip().lstrip("#") for c in value if c.strip()]


class JiraConfig(AppConfigBase):
    provider: Literal["jira"] = JIRA
    site: str | None = None
    products: list[str] = Field(default_factory=lambda: ["jira-software"])
    groups: list[str] = Field(default_factory=list)


class ZoomConfig(AppConfigBase):
    provider: Literal["zoom"] = ZOOM
    license_type: Literal["basic", "pro", "business"] = "pro"
    add_ons: list[Literal["webinar", "cloud_recording", "large_meeting"]] = Field(
        default_factory=list
    )


AppConfig = Annotated[
    Union[GoogleWorkspaceConfig, Microsoft365Config, SlackConfig, JiraConfig, ZoomConfig],
    Field(discriminator="provider"),
]

CONFIG_MODELS: dict[str, type[AppConfigBase]] = {
    GOOGLE_WORKSPACE: GoogleWorkspaceConfig,
    MICROSOFT_365: Microsoft365Config,
    SLACK: SlackConfig,
    JIRA: JiraConfig,
    ZOOM: ZoomConfig,
}
