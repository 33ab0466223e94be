"""
CLI command for the static catalog — what the adapters accept.

Usage::

    accountctl catalog
    accountctl catalog --json
"""

from __future__ import annotations

import json

import click

from accountctl.ui.cli.common import load_settings_or_exit


@click.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def catalog(ctx: click.Context, as_json: bool) -> None:
    """Show org units, licenses, groups and other selectable values."""
    settings, _ = load_settings_or_exit(ctx)
    cat = settings.catalog

    if as_json:
        click.echo(json.dumps(cat.model_dump(mode="json"), indent=2))
        return

    click.secho("\n🗂  Google Workspace", fg="cyan", bold=True)
    click.echo(f"   Org units: {', '.join(cat.google_org_units)}")
    for sku, lic in cat.google_licenses.items():
        click.echo(f"   • {sku}  ({lic.name}, product {lic.product_id})")
    for group in cat.google_groups:
        click.echo(f"   ◦ group {group.id}  {group.name}")

    click.secho("\n🗂  Microsoft 365", fg="cyan", bold=True)
    click.echo(f"   Usage locations: {', '.join(cat.usage_locations)}")
    for lic in cat.microsoft_licenses:
        click.echo(f"   • {lic.sku_part_number}  {lic.name}  [{lic.sku_id}]")
    for group in cat.microsoft_groups:
        click.echo(f"   ◦ group {group.id}  {group.name}")

    click.secho("\n🗂  Zoom", fg="cyan", bold=True)
    types = ", ".join(f"{name}={code}" for name, code in cat.zoom_license_types.items())
    click.echo(f"   License types: {types}")
    click.echo(f"   Add-ons: {', '.join(cat.zoom_add_ons)}")

    click.secho("\n🗂  Jira", fg="cyan", bold=True)
    for product, group in cat.jira_product_groups.items():
        click.echo(f"   • {product} → {group}")
    click.echo()
