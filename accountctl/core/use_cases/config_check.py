"""
Config check use case — validate accountctl.yml and vendor credentials.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from accountctl.adapters.factory import missing_credentials
from accountctl.core.config.loader import ConfigError, Settings, find_config_file, load_settings
from accountctl.core.models.configs import PROVIDERS


@dataclass
class ConfigCheckResult:
    """Result of configuration validation."""

    valid: bool = False
    settings: Settings | None = None
    config_path: Path | None = None
    providers: dict[str, list[str]] = field(default_factory=dict)   # id → missing env vars
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def configured(self) -> list[str]:
        return [p for p, missing in self.providers.items() if not missing]

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "configured_providers": self.configured,
            "missing_credentials": {p: m for p, m in self.providers.items() if m},
            "catalog": self.settings.catalog.summary() if self.settings else {},
        }


def check_config(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> ConfigCheckResult:
    """Validate settings and report which providers can run.

    A missing accountctl.yml is a warning (defaults apply); a provider
    without credentials is a warning; an invalid file is an error.
    """
    result = ConfigCheckResult()
    env = os.environ if environ is None else environ

    if config_path is None:
        config_path = find_config_file()
    if config_path is None:
        result.warnings.append("No accountctl.yml found, using defaults.")
    result.config_path = config_path

    try:
        settings = load_settings(config_path, search=False)
    except ConfigError as e:
        result.errors.append(str(e))
        return result
    result.settings = settings

    enabled = settings.enabled_providers or list(PROVIDERS)
    unknown = [p for p in enabled if p not in PROVIDERS]
    if unknown:
        result.errors.append(f"Unknown providers in enabled_providers: {', '.join(unknown)}")

    for provider in enabled:
        if provider not in PROVIDERS:
            continue
        missing = missing_credentials(provider, env)
        result.providers[provider] = missing
        if missing:
            result.warnings.append(f"{provider}: missing {', '.join(missing)}")

    google = settings.providers.google_workspace
    if (
        "google-workspace" in result.configured
        and not (env.get("GOOGLE_ADMIN_SUBJECT") or google.admin_subject)
    ):
        result.errors.append(
            "google-workspace: no admin subject "
            "(GOOGLE_ADMIN_SUBJECT or providers.google_workspace.admin_subject)"
        )
    if "jira" in result.configured and not (env.get("JIRA_SITE") or settings.providers.jira.site):
        result.errors.append("jira: no site (JIRA_SITE or providers.jira.site)")

    if not result.configured:
        result.warnings.append("No provider has credentials; only --mock runs will work.")

    result.valid = len(result.errors) == 0
    return result
