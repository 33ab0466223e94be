"""
accountctl — CLI entrypoint.

Usage:
    accountctl --help
    accountctl provision request.yml
    accountctl deactivate leaver.yml
    accountctl provision jane.yml --at 2026-11-02T09:00:00Z
    accountctl jobs run-due
    accountctl audit --email jane@example.com
    accountctl config check
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from accountctl import __version__
from accountctl.core.observability.logging_config import setup_logging
from accountctl.ui.cli.common import (
    build_service,
    echo_json,
    echo_plan,
    echo_report,
    read_payload,
)


@click.group()
@click.version_option(version=__version__, prog_name="accountctl")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to accountctl.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """accountctl — provision and deactivate employee accounts across SaaS apps."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("ACCTL_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("ACCTL_LOG_FILE"),
        log_file_level=os.environ.get("ACCTL_LOG_FILE_LEVEL"),
        quiet_third_party=not debug,
    )


def _run_request(
    ctx: click.Context,
    payload: dict,
    *,
    plan_only: bool,
    as_json: bool,
    show_secrets: bool,
    mock: bool,
    schedule: str | None = None,
) -> None:
    from accountctl.core.errors import ValidationError

    service = build_service(ctx, mock=mock)
    if schedule and not plan_only:
        payload["scheduleTime"] = schedule

    try:
        if plan_only:
            preview = service.plan_request(payload)
        else:
            job, report = service.run_sync(payload)
    except (ValidationError, ValueError) as e:
        if as_json:
            click.echo(json.dumps({"error": str(e), "errors": getattr(e, "errors", [])}, indent=2))
        else:
            click.secho(f"❌ {e}", fg="red")
            for err in getattr(e, "errors", [])[1:]:
                click.echo(f"   • {err}")
        sys.exit(1)

    if plan_only:
        if as_json:
            echo_json(preview.to_dict())
        else:
            echo_plan(preview)
        if not preview.ok:
            sys.exit(1)
        return

    if report is None and job.scheduled and job.status == "pending":
        if as_json:
            echo_json({"job": job.model_dump(mode="json")})
        else:
            click.secho(f"🕒 Job {job.id} scheduled for {job.schedule_time}", fg="cyan")
            click.echo(f"   Run it early with: accountctl jobs run {job.id}")
        return

    if report is None:
        click.secho(f"⊘ Job {job.id} was cancelled", fg="yellow")
        sys.exit(1)

    if as_json:
        echo_json({"job": job.model_dump(mode="json"), **report.to_dict()},
                  show_secrets=show_secrets)
    else:
        mode_label = "[mock] " if mock else ""
        click.secho(f"\n⚡ {mode_label}{report.operation} — job {job.id}", fg="cyan", bold=True)
        echo_report(report, verbose=ctx.obj.get("verbose", False), show_secrets=show_secrets)
        if not show_secrets and any(
            "initialPassword" in r.metadata for r in report.per_app.values()
        ):
            click.secho("   🔑 Initial passwords hidden; rerun with --show-secrets "
                        "or read them from the vendor console.", fg="yellow")
            click.echo()

    if report.overall == "error":
        sys.exit(1)


_run_options = [
    click.option("--plan-only", "--dry-run", "plan_only", is_flag=True,
                 help="Validate and plan, apply nothing."),
    click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON."),
    click.option("--show-secrets", is_flag=True,
                 help="Print generated passwords instead of redacting them."),
    click.option("--mock", is_flag=True, help="Use mock provisioners (no vendor calls)."),
    click.option("--at", "schedule", default=None, metavar="TIME",
                 help="Schedule for this ISO 8601 time instead of running now (UTC if no offset)."),
]


def _with_run_options(func):  # type: ignore[no-untyped-def]
    for option in reversed(_run_options):
        func = option(func)
    return func


@cli.command()
@click.argument("request_file", metavar="FILE")
@_with_run_options
@click.pass_context
def provision(
    ctx: click.Context,
    request_file: str,
    plan_only: bool,
    as_json: bool,
    show_secrets: bool,
    mock: bool,
    schedule: str | None,
) -> None:
    """Provision accounts from a request file (JSON or YAML, - for stdin).

    Examples:

        accountctl provision jane.yml

        accountctl provision jane.yml --plan-only

        accountctl provision jane.json --mock --json

        accountctl provision jane.yml --at 2026-11-02T09:00:00+01:00
    """
    payload = read_payload(request_file)
    _run_request(ctx, payload, plan_only=plan_only, as_json=as_json,
                 show_secrets=show_secrets, mock=mock, schedule=schedule)


@cli.command()
@click.argument("request_file", metavar="FILE")
@_with_run_options
@click.pass_context
def deactivate(
    ctx: click.Context,
    request_file: str,
    plan_only: bool,
    as_json: bool,
    show_secrets: bool,
    mock: bool,
    schedule: str | None,
) -> None:
    """Deactivate the accounts named in a request file.

    The file uses the same shape as for `provision`; its operation is
    forced to deactivate.

    Examples:

        accountctl deactivate leaver.yml --plan-only
    """
    payload = read_payload(request_file)
    if "userEmail" not in payload:
        payload["operation"] = "deactivate"
    _run_request(ctx, payload, plan_only=plan_only, as_json=as_json,
                 show_secrets=show_secrets, mock=mock, schedule=schedule)


@cli.command()
@click.argument("request_file", metavar="FILE")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--mock", is_flag=True, help="Use mock provisioners (no vendor calls).")
@click.pass_context
def plan(ctx: click.Context, request_file: str, as_json: bool, mock: bool) -> None:
    """Show what a request would change, without applying anything."""
    payload = read_payload(request_file)
    _run_request(ctx, payload, plan_only=True, as_json=as_json,
                 show_secrets=False, mock=mock)


@cli.command()
@click.argument("request_file", metavar="FILE")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--mock", is_flag=True, help="Use mock provisioners (no vendor calls).")
@click.pass_context
def validate(ctx: click.Context, request_file: str, as_json: bool, mock: bool) -> None:
    """Validate a request file against every selected app. Contacts no vendor."""
    from accountctl.core.errors import ValidationError

    service = build_service(ctx, mock=mock)
    try:
        report = service.validate_request(read_payload(request_file))
    except (ValidationError, ValueError) as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    if as_json:
        echo_json(report)
    else:
        click.echo()
        for app, entry in report["applications"].items():
            if entry["valid"]:
                click.secho(f"   ✓ {app}", fg="green")
            else:
                click.secho(f"   ✗ {app}", fg="red")
                for err in entry["errors"]:
                    click.echo(f"     │ {err}")
        click.echo()

    if not report["valid"]:
        sys.exit(1)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--mock", is_flag=True, help="Show providers as seen in mock mode.")
@click.pass_context
def providers(ctx: click.Context, as_json: bool, mock: bool) -> None:
    """List known providers and whether they are configured."""
    service = build_service(ctx, mock=mock)
    info = service.providers()

    if as_json:
        click.echo(json.dumps(info, indent=2))
        return

    click.secho("\n🔌 Providers", fg="cyan", bold=True)
    for entry in info:
        if entry["registered"] and entry["available"]:
            click.secho(f"   ✓ {entry['id']}", fg="green", nl=False)
        else:
            click.secho(f"   ✗ {entry['id']}", fg="red", nl=False)
        click.echo(f"  {entry.get('name', '')}")
    click.echo()


@cli.group()
def config() -> None:
    """Configuration commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate accountctl.yml and vendor credentials."""
    from accountctl.core.use_cases.config_check import check_config

    result = check_config(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)
        return

    if result.valid:
        click.secho("✅ Configuration is valid", fg="green", bold=True)
        click.echo(f"   File: {result.config_path or '(defaults)'}")
        configured = ", ".join(result.configured) or "none"
        click.echo(f"   Providers with credentials: {configured}")
    else:
        click.secho("❌ Configuration errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    if not result.valid:
        click.echo()
        sys.exit(1)

    click.echo()


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address.")
@click.option("--port", default=8000, type=int, help="Port.")
@click.option("--mock", is_flag=True, help="Use mock provisioners (no vendor calls).")
@click.pass_context
def web(ctx: click.Context, host: str, port: int, mock: bool) -> None:
    """Start the provisioning API server."""
    from accountctl.ui.web.server import create_app, run_server

    service = build_service(ctx, mock=mock)
    app = create_app(service)
    service.start()

    debug = ctx.obj.get("debug", False)

    click.echo()
    click.secho("⚡ accountctl — Provisioning API", bold=True)
    click.echo(f"   API:   http://{host}:{port}/api/provisioning")
    click.echo(f"   State: {service.store.path.parent}")
    if mock:
        click.secho("   Mode: mock (no vendor calls)", fg="yellow")
    if debug:
        click.secho("   Logging: DEBUG (all output)", fg="yellow")
    click.echo()

    try:
        run_server(app, host=host, port=port, debug=debug)
    finally:
        service.shutdown()


# ── Register sub-command groups from accountctl/ui/cli/ ─────────

from accountctl.ui.cli.audit import audit  # noqa: E402
from accountctl.ui.cli.catalog import catalog  # noqa: E402
from accountctl.ui.cli.jobs import jobs  # noqa: E402

cli.add_command(jobs)
cli.add_command(catalog)
cli.add_command(audit)


def main() -> None:
    """Entry point for `python -m accountctl.main`."""
    cli(obj={})


if __name__ == "__main__":
    main()
