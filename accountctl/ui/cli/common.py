"""
Shared helpers for the CLI commands.

Every command resolves settings the same way (``--config`` or an
upward search for accountctl.yml) and builds its ProvisioningService
from them.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click
import yaml

from accountctl.core.security.redaction import redact

_STATUS_STYLE = {
    "success": ("✓", "green"),
    "partial": ("◐", "yellow"),
    "pending": ("⊘", "cyan"),
    "error": ("✗", "red"),
}


def resolve_config_path(ctx: click.Context) -> Path | None:
    from accountctl.core.config.loader import find_config_file

    config_path: Path | None = ctx.obj.get("config_path")
    return config_path or find_config_file()


def load_settings_or_exit(ctx: click.Context):  # type: ignore[no-untyped-def]
    """Load settings; print the error and exit 1 on a bad config file."""
    from accountctl.core.config.loader import ConfigError, load_settings

    config_path = resolve_config_path(ctx)
    try:
        return load_settings(config_path, search=False), config_path
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)


def build_service(ctx: click.Context, mock: bool = False):  # type: ignore[no-untyped-def]
    """Build a ProvisioningService for the current project."""
    from accountctl.core.config.loader import config_root
    from accountctl.core.use_cases.provision import ProvisioningService

    settings, config_path = load_settings_or_exit(ctx)
    return ProvisioningService.from_settings(
        settings,
        root=config_root(config_path),
        mock=mock or ctx.obj.get("mock", False),
    )


def read_payload(path: str) -> dict[str, Any]:
    """Read a request file (JSON or YAML). ``-`` reads stdin."""
    try:
        if path == "-":
            text = sys.stdin.read()
        else:
            text = Path(path).read_text(encoding="utf-8")
        data = yaml.safe_load(text)
    except (OSError, yaml.YAMLError) as e:
        click.secho(f"❌ Cannot read request {path}: {e}", fg="red")
        sys.exit(1)
    if not isinstance(data, dict):
        click.secho(f"❌ Request {path} must be a mapping", fg="red")
        sys.exit(1)
    return data


def echo_json(data: Any, *, show_secrets: bool = False) -> None:
    click.echo(json.dumps(data if show_secrets else redact(data), indent=2, default=str))


def echo_report(report: Any, *, verbose: bool = False, show_secrets: bool = False) -> None:
    """Pretty-print a ProvisioningReport."""
    data = report.to_dict()
    if not show_secrets:
        data = redact(data)

    click.echo()
    for app, result in data["perApp"].items():
        marker, color = _STATUS_STYLE.get(result["status"], ("?", "white"))
        click.secho(f"   {marker} {app} ", fg=color, nl=False)
        click.echo(f"({result['status']})")
        for key, value in result["external_ids"].items():
            click.echo(f"     • {key}: {value}")
        for key, value in result["external_links"].items():
            click.echo(f"     🔗 {key}: {value}")
        for err in result["errors"]:
            click.secho(f"     │ {err}", fg="red")
        for warn in result["warnings"]:
            click.secho(f"     │ {warn}", fg="yellow")
        if verbose and result.get("metadata"):
            for key, value in result["metadata"].items():
                click.echo(f"     · {key}: {value}")

    click.echo()
    marker, color = _STATUS_STYLE.get(data["overall"], ("?", "white"))
    counts = ", ".join(f"{n} {s}" for s, n in data["summary"].items() if n)
    click.secho(f"   Result: {data['overall']} ({counts})", fg=color, bold=True)
    click.echo(f"   Operation: {data['operationId']} in {data['durationMs']}ms")
    click.echo()


def echo_plan(preview: Any) -> None:
    """Pretty-print a PlanPreview."""
    click.echo()
    for app, plan in preview.plans.items():
        click.secho(f"   📋 {app}", fg="cyan", bold=True)
        if plan.is_empty:
            click.echo("     (nothing to do)")
        for action in plan.actions:
            required = " *" if action.required else ""
            click.echo(f"     • {action.type} {action.resource}{required}: {action.details}")
    for app, errors in preview.errors.items():
        click.secho(f"   ✗ {app}", fg="red", bold=True)
        for err in errors:
            click.echo(f"     │ {err}")
    click.echo()
