"""
CLI commands for provisioning jobs.

Usage::

    accountctl jobs list
    accountctl jobs list --status failed --json
    accountctl jobs show <job-id>
    accountctl jobs cancel <job-id>
    accountctl jobs run <job-id>
    accountctl jobs run-due
"""

from __future__ import annotations

import sys

import click

from accountctl.ui.cli.common import build_service, echo_json, echo_report

_STATUS_COLORS = {
    "pending": "white",
    "running": "cyan",
    "completed": "green",
    "failed": "red",
    "cancelled": "yellow",
}


@click.group()
def jobs() -> None:
    """Provisioning jobs — list, inspect, cancel, run scheduled ones."""


@jobs.command("list")
@click.option(
    "--status",
    type=click.Choice(["pending", "running", "completed", "failed", "cancelled"]),
    default=None,
    help="Only jobs in this status.",
)
@click.option("--limit", "-n", type=int, default=20, help="Maximum jobs to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_jobs(ctx: click.Context, status: str | None, limit: int, as_json: bool) -> None:
    """List jobs, newest first."""
    service = build_service(ctx)
    found = service.list_jobs(status=status, limit=limit)

    if as_json:
        echo_json([job.model_dump(mode="json") for job in found])
        return

    if not found:
        click.echo("No jobs.")
        return

    click.echo()
    for job in found:
        employee = (job.config.get("employee") or {}).get("workEmail", "?")
        apps = ", ".join(job.config.get("applications") or {})
        click.secho(f"   {job.status:<10}", fg=_STATUS_COLORS.get(job.status, "white"), nl=False)
        when = f"  🕒 {job.schedule_time}" if job.scheduled and job.status == "pending" else ""
        click.echo(f" {job.id}  {employee}  [{apps}]  {job.created_at}{when}")
    click.echo()


@jobs.command("show")
@click.argument("job_id")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def show_job(ctx: click.Context, job_id: str, as_json: bool) -> None:
    """Show one job and its per-app results."""
    from accountctl.core.persistence.jobs import JobNotFoundError

    service = build_service(ctx)
    try:
        job = service.get_job(job_id)
    except JobNotFoundError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    if as_json:
        echo_json(job.model_dump(mode="json"))
        return

    click.secho(f"\n📋 Job {job.id}", fg="cyan", bold=True)
    click.secho(f"   Status:  {job.status}", fg=_STATUS_COLORS.get(job.status, "white"))
    click.echo(f"   Created: {job.created_at}")
    click.echo(f"   Updated: {job.updated_at}")
    if job.scheduled:
        click.echo(f"   Scheduled: {job.schedule_time}")
    if job.error:
        click.secho(f"   Error:   {job.error}", fg="red")

    result = job.result or {}
    if result:
        click.echo(f"   Overall: {result.get('overall')}")
        for app, app_result in (result.get("perApp") or {}).items():
            click.echo(f"     • {app}: {app_result.get('status')}")
            for err in app_result.get("errors", []):
                click.secho(f"       │ {err}", fg="red")
            for warn in app_result.get("warnings", []):
                click.secho(f"       │ {warn}", fg="yellow")
    click.echo()


@jobs.command("cancel")
@click.argument("job_id")
@click.pass_context
def cancel_job(ctx: click.Context, job_id: str) -> None:
    """Cancel a pending or running job."""
    from accountctl.core.persistence.jobs import JobNotFoundError, JobStateError

    service = build_service(ctx)
    try:
        job = service.cancel_job(job_id)
    except (JobNotFoundError, JobStateError) as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    click.secho(f"⊘ Job {job.id} cancelled", fg="yellow")


@jobs.command("run")
@click.argument("job_id")
@click.option("--mock", is_flag=True, help="Use mock provisioners (no vendor calls).")
@click.pass_context
def run_job(ctx: click.Context, job_id: str, mock: bool) -> None:
    """Run a scheduled job now instead of waiting for its time."""
    from accountctl.core.persistence.jobs import JobNotFoundError, JobStateError

    service = build_service(ctx, mock=mock)
    try:
        job, report = service.run_job(job_id)
    except (JobNotFoundError, JobStateError) as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    if report is None:
        click.secho(f"❌ Job {job.id} {job.status}: {job.error or ''}", fg="red")
        sys.exit(1)

    click.secho(f"\n⚡ {report.operation} — job {job.id}", fg="cyan", bold=True)
    echo_report(report, verbose=ctx.obj.get("verbose", False))
    if report.overall == "error":
        sys.exit(1)


@jobs.command("run-due")
@click.option("--mock", is_flag=True, help="Use mock provisioners (no vendor calls).")
@click.pass_context
def run_due(ctx: click.Context, mock: bool) -> None:
    """Run every scheduled job whose time has come (for cron)."""
    service = build_service(ctx, mock=mock)
    ran = service.run_due_jobs()

    if not ran:
        click.echo("No scheduled jobs are due.")
        return

    failed = 0
    for job, report in ran:
        outcome = report.overall if report is not None else job.status
        failed += job.status == "failed"
        click.secho(f"   {job.id}  {outcome}", fg="red" if job.status == "failed" else "green")
    if failed:
        sys.exit(1)
