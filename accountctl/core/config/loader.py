"""
Configuration loader — reads accountctl.yml into typed settings.

The file holds non-secret settings only (timeouts, tenant domains,
catalog overrides). Vendor credentials come from environment variables
and are read by ``accountctl.adapters.factory``.

A missing file is not an error: every setting has a default.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from accountctl.core.config.catalog import Catalog

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "accountctl.yml"


class ConfigError(Exception):
    """Raised when configuration is invalid or unreadable."""


class GoogleSettings(BaseModel):
    customer: str = "my_customer"
    admin_subject: str | None = None
    admin_console_url: str = "https://admin.google.com/ac/users"


class MicrosoftSettings(BaseModel):
    # Source → target domain rewrite for the user principal name
    upn_domains: dict[str, str] = Field(default_factory=dict)

    @field_validator("upn_domains")
    @classmethod
    def _lower_domains(cls, value: dict[str, str]) -> dict[str, str]:
        return {k.lower().lstrip("@"): v.lower().lstrip("@") for k, v in value.items()}


class SlackSettings(BaseModel):
    workspace_url: str = "https://app.slack.com"
    team_id: str | None = None


class JiraSettings(BaseModel):
    site: str | None = None


class ZoomSettings(BaseModel):
    web_url: str = "https://zoom.us"


class ProviderSettings(BaseModel):
    google_workspace: GoogleSettings = Field(default_factory=GoogleSettings)
    microsoft_365: MicrosoftSettings = Field(default_factory=MicrosoftSettings)
    slack: SlackSettings = Field(default_factory=SlackSettings)
    jira: JiraSettings = Field(default_factory=JiraSettings)
    zoom: ZoomSettings = Field(default_factory=ZoomSettings)


class Settings(BaseModel):
    """Everything configurable about a provisioning deployment."""

    state_dir: str = ".state"
    app_timeout: float = Field(default=120.0, gt=0)     # per-app validate→apply budget
    http_timeout: float = Field(default=30.0, gt=0)
    max_workers: int = Field(default=5, ge=1)
    queue_workers: int = Field(default=2, ge=1)
    schedule_interval: float = Field(default=30.0, gt=0)  # seconds between scheduler polls
    enabled_providers: list[str] | None = None
    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    catalog: Catalog = Field(default_factory=Catalog)

    def state_path(self, root: Path | None = None) -> Path:
        path = Path(self.state_dir)
        if not path.is_absolute() and root is not None:
            path = root / path
        return path


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for accountctl.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to accountctl.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_settings(path: Path | None = None, *, search: bool = True) -> Settings:
    """Load and validate settings.

    Args:
        path: Explicit path to accountctl.yml. If None, searches upward
              (unless ``search`` is False) and falls back to defaults.

    Raises:
        ConfigError: If an explicit file is missing, or any file is invalid.
    """
    if path is None and search:
        path = find_config_file()

    if path is None:
        logger.debug("No %s found, using defaults", CONFIG_FILE)
        return Settings()

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading settings from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        settings = Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.info("Loaded settings from %s", path)
    return settings


def config_root(config_path: Path | None) -> Path:
    """Directory relative paths in the settings resolve against."""
    if config_path is None:
        return Path.cwd().resolve()
    return config_path.parent.resolve()
