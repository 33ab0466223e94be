"""
Adapter factory — builds authenticated vendor clients at bootstrap.

Credentials are read from the environment only. A provider whose
credentials are missing is left unregistered; requests that select it
get an error Result for that app, and ``accountctl config check``
names the missing variables.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path

from accountctl.adapters.atlassian.jira import JiraClient, JiraProvisioner, site_url
from accountctl.adapters.auth import (
    BasicAuth,
    BearerToken,
    ClientCredentials,
    GoogleServiceAccount,
    GraphAppCredentials,
)
from accountctl.adapters.base import Provisioner
from accountctl.adapters.chat.slack import SCIM_URL, WEB_API_URL, SlackClient, SlackProvisioner
from accountctl.adapters.directory.google_workspace import (
    DIRECTORY_URL,
    SCOPES,
    GoogleDirectoryClient,
    GoogleWorkspaceProvisioner,
)
from accountctl.adapters.directory.microsoft_365 import (
    GRAPH_SCOPE,
    GRAPH_URL,
    GraphClient,
    Microsoft365Provisioner,
)
from accountctl.adapters.http import HttpClient
from accountctl.adapters.meetings.zoom import API_URL as ZOOM_API_URL
from accountctl.adapters.meetings.zoom import TOKEN_URL as ZOOM_TOKEN_URL
from accountctl.adapters.meetings.zoom import ZoomClient, ZoomProvisioner
from accountctl.adapters.registry import ProvisionerRegistry
from accountctl.core.config.loader import ConfigError, Settings
from accountctl.core.models.configs import GOOGLE_WORKSPACE, JIRA, MICROSOFT_365, SLACK, ZOOM

logger = logging.getLogger(__name__)

# Environment variables each provider needs
REQUIRED_ENV: dict[str, tuple[str, ...]] = {
    GOOGLE_WORKSPACE: ("GOOGLE_CREDENTIALS_JSON", "GOOGLE_ADMIN_SUBJECT"),
    MICROSOFT_365: ("MS_GRAPH_TENANT_ID", "MS_GRAPH_CLIENT_ID", "MS_GRAPH_CLIENT_SECRET"),
    SLACK: ("SLACK_SCIM_TOKEN", "SLACK_BOT_TOKEN"),
    JIRA: ("JIRA_SITE", "JIRA_EMAIL", "JIRA_API_TOKEN"),
    ZOOM: ("ZOOM_ACCOUNT_ID", "ZOOM_CLIENT_ID", "ZOOM_CLIENT_SECRET"),
}


def missing_credentials(provider: str, environ: Mapping[str, str]) -> list[str]:
    """Names of the provider's required variables that are unset or empty."""
    required = list(REQUIRED_ENV.get(provider, ()))
    if provider == GOOGLE_WORKSPACE:
        # The admin subject may come from accountctl.yml instead
        required.remove("GOOGLE_ADMIN_SUBJECT")
    if provider == JIRA:
        required.remove("JIRA_SITE")
    return [name for name in required if not environ.get(name)]


def _google_credentials(value: str) -> dict:
    """GOOGLE_CREDENTIALS_JSON holds either the key JSON or a path to it."""
    text = value.strip()
    if not text.startswith("{"):
        try:
            text = Path(text).expanduser().read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read Google credentials file {value}: {e}") from e
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"GOOGLE_CREDENTIALS_JSON is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("GOOGLE_CREDENTIALS_JSON must be a JSON object")
    return data


def build_google(settings: Settings, env: Mapping[str, str]) -> Provisioner:
    cfg = settings.providers.google_workspace
    subject = env.get("GOOGLE_ADMIN_SUBJECT") or cfg.admin_subject
    if not subject:
        raise ConfigError(
            "Google Workspace needs an admin subject "
            "(GOOGLE_ADMIN_SUBJECT or providers.google_workspace.admin_subject)"
        )
    auth = GoogleServiceAccount(
        _google_credentials(env["GOOGLE_CREDENTIALS_JSON"]),
        SCOPES,
        subject=subject,
        timeout=settings.http_timeout,
    )
    http = HttpClient(DIRECTORY_URL, provider=GOOGLE_WORKSPACE, auth=auth,
                      timeout=settings.http_timeout)
    return GoogleWorkspaceProvisioner(
        GoogleDirectoryClient(http),
        catalog=settings.catalog,
        admin_console_url=cfg.admin_console_url,
    )


def build_microsoft(settings: Settings, env: Mapping[str, str]) -> Provisioner:
    auth = GraphAppCredentials(
        env["MS_GRAPH_TENANT_ID"],
        env["MS_GRAPH_CLIENT_ID"],
        env["MS_GRAPH_CLIENT_SECRET"],
        scopes=[GRAPH_SCOPE],
        provider=MICROSOFT_365,
    )
    http = HttpClient(GRAPH_URL, provider=MICROSOFT_365, auth=auth,
                      timeout=settings.http_timeout)
    return Microsoft365Provisioner(
        GraphClient(http),
        catalog=settings.catalog,
        upn_domains=settings.providers.microsoft_365.upn_domains,
    )


def build_slack(settings: Settings, env: Mapping[str, str]) -> Provisioner:
    scim = HttpClient(SCIM_URL, provider=SLACK, auth=BearerToken(env["SLACK_SCIM_TOKEN"]),
                      timeout=settings.http_timeout)
    web = HttpClient(WEB_API_URL, provider=SLACK, auth=BearerToken(env["SLACK_BOT_TOKEN"]),
                     timeout=settings.http_timeout)
    return SlackProvisioner(
        SlackClient(scim, web),
        workspace_url=settings.providers.slack.workspace_url,
    )


def build_jira(settings: Settings, env: Mapping[str, str]) -> Provisioner:
    site = env.get("JIRA_SITE") or settings.providers.jira.site
    if not site:
        raise ConfigError("Jira needs a site (JIRA_SITE or providers.jira.site)")
    http = HttpClient(
        site_url(site),
        provider=JIRA,
        auth=BasicAuth(env["JIRA_EMAIL"], env["JIRA_API_TOKEN"]),
        timeout=settings.http_timeout,
    )
    return JiraProvisioner(JiraClient(http), catalog=settings.catalog)


def build_zoom(settings: Settings, env: Mapping[str, str]) -> Provisioner:
    auth = ClientCredentials(
        ZOOM_TOKEN_URL,
        env["ZOOM_CLIENT_ID"],
        env["ZOOM_CLIENT_SECRET"],
        provider=ZOOM,
        extra={"grant_type": "account_credentials", "account_id": env["ZOOM_ACCOUNT_ID"]},
        basic_auth=True,
        timeout=settings.http_timeout,
    )
    http = HttpClient(ZOOM_API_URL, provider=ZOOM, auth=auth, timeout=settings.http_timeout)
    return ZoomProvisioner(
        ZoomClient(http),
        catalog=settings.catalog,
        web_url=settings.providers.zoom.web_url,
    )


BUILDERS = {
    GOOGLE_WORKSPACE: build_google,
    MICROSOFT_365: build_microsoft,
    SLACK: build_slack,
    JIRA: build_jira,
    ZOOM: build_zoom,
}


def build_registry(
    settings: Settings,
    environ: Mapping[str, str] | None = None,
    *,
    mock: bool = False,
) -> ProvisionerRegistry:
    """Registry with every provider that has credentials.

    Providers without credentials, or whose credentials fail to load,
    are skipped and logged.
    """
    registry = ProvisionerRegistry(mock_mode=mock)
    if mock:
        return registry

    env = os.environ if environ is None else environ
    enabled = settings.enabled_providers or list(BUILDERS)

    for provider in enabled:
        builder = BUILDERS.get(provider)
        if builder is None:
            logger.warning("Unknown provider in enabled_providers: %s", provider)
            continue
        missing = missing_credentials(provider, env)
        if missing:
            logger.info("%s not configured (missing %s)", provider, ", ".join(missing))
            continue
        try:
            registry.register(builder(settings, env))
        except ConfigError as e:
            logger.warning("%s not configured: %s", provider, e)
        except Exception as e:
            logger.error("Failed to initialise %s: %s", provider, e)

    return registry
