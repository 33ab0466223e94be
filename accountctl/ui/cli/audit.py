"""
CLI command for the audit ledger.

Usage::

    accountctl audit
    accountctl audit --email jane@example.com
    accountctl audit --job <job-id> --json
"""

from __future__ import annotations

import click

from accountctl.ui.cli.common import build_service, echo_json

_STATUS_COLORS = {"success": "green", "partial": "yellow", "pending": "cyan", "error": "red"}


@click.command()
@click.option("--email", default=None, help="Only entries for this employee.")
@click.option("--job", "job_id", default=None, help="Only entries for this job.")
@click.option("-n", "limit", type=int, default=20, help="Number of entries to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def audit(ctx: click.Context, email: str | None, job_id: str | None, limit: int,
          as_json: bool) -> None:
    """Show recent provisioning history from the audit ledger."""
    service = build_service(ctx)
    entries = service.audit.search(email=email, job_id=job_id, limit=limit)

    if as_json:
        echo_json([e.model_dump(mode="json") for e in entries])
        return

    if not entries:
        click.echo("No audit entries.")
        return

    click.echo()
    for entry in entries:
        color = _STATUS_COLORS.get(entry.status, "white")
        click.secho(f"   {entry.status:<8}", fg=color, nl=False)
        click.echo(f" {entry.timestamp}  {entry.operation:<10} {entry.email}  "
                   f"[{', '.join(entry.apps)}]  job {entry.job_id}")
        for err in entry.errors:
            click.secho(f"            │ {err}", fg="red")
    click.echo()
    click.echo(f"   {len(entries)} of {service.audit.entry_count()} entries")
    click.echo()
