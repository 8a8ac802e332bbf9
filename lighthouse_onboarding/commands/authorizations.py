"""lighthouse-authorizations: inspect, validate and render the authorization list.

- show: Table of entries with role names
- validate: Check the Lighthouse rules, optionally against a live subscription
- render: Write the deployment parameters for the delegation registration
"""

import json
import sys
from typing import Optional

import click
from rich.console import Console

from ..authorizations import load_authorizations, render_parameters, verify_role_definitions
from ..exceptions import AuthorizationListError, OnboardingError
from ..models import is_guid
from ..reporting import build_authorizations_table
from .base import EXIT_CONFIGURATION, EXIT_FAILURE, exit_for_exception, exit_with_error, load_config

console = Console()

file_option = click.option(
    "--file",
    "file_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Authorization list JSON (default: the packaged list)",
)


def _load(file_path: Optional[str]):
    try:
        return load_authorizations(file_path)
    except AuthorizationListError as e:
        for problem in e.problems:
            click.echo(f"  - {problem}", err=True)
        exit_with_error(e.message, EXIT_CONFIGURATION)


@click.group(name="lighthouse-authorizations")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Logging level (default: LOG_LEVEL or INFO)",
)
@click.pass_context
def authorizations(ctx: click.Context, log_level: Optional[str]) -> None:
    """Azure Lighthouse authorization list commands."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(log_level)


@authorizations.command(name="show")
@file_option
def show(file_path: Optional[str]) -> None:
    """Show the authorization list with role names."""
    entries = _load(file_path)
    console.print(build_authorizations_table(entries))
    console.print(f"\nTotal: {len(entries)} authorization(s)")


@authorizations.command(name="validate")
@file_option
@click.option(
    "--subscription",
    "subscription_id",
    default=None,
    help="Also verify every role definition exists in this subscription",
)
@click.pass_context
def validate(
    ctx: click.Context, file_path: Optional[str], subscription_id: Optional[str]
) -> None:
    """Validate the authorization list.

    Example:
        lighthouse-authorizations validate
        lighthouse-authorizations validate --subscription 11111111-1111-1111-1111-111111111111
    """
    entries = _load(file_path)
    console.print(f"[green]✓[/green] {len(entries)} authorization(s) are well formed")

    if not subscription_id:
        return
    if not is_guid(subscription_id):
        exit_with_error(
            f"Subscription id must be a GUID: {subscription_id}", EXIT_CONFIGURATION
        )

    # SDK imports happen only when a live check is requested
    from ..credential_provider import create_credential
    from ..services.arm_service import ArmService

    config = ctx.obj["config"]
    store = ArmService(create_credential(config.azure), subscription_id)
    try:
        missing = verify_role_definitions(
            entries, store, f"/subscriptions/{subscription_id}"
        )
    except OnboardingError as e:
        exit_for_exception(e)

    if missing:
        for role_id in missing:
            console.print(f"[red]✗[/red] Role definition not found: {role_id}")
        sys.exit(EXIT_FAILURE)
    console.print("[green]✓[/green] All role definitions exist")


@authorizations.command(name="render")
@file_option
@click.option(
    "--managing-tenant-id",
    required=True,
    help="Tenant ID of the managing (service provider) tenant",
)
@click.option(
    "--offer-name",
    default="Sentinel Managed Services",
    show_default=True,
    help="Offer name shown to the customer",
)
@click.option(
    "--description",
    default="Microsoft Sentinel operations by the managing tenant",
    show_default=True,
    help="Offer description shown to the customer",
)
@click.option(
    "--output",
    "output_path",
    type=click.Path(dir_okay=False, writable=True),
    default=None,
    help="Write the parameters file here instead of stdout",
)
def render(
    file_path: Optional[str],
    managing_tenant_id: str,
    offer_name: str,
    description: str,
    output_path: Optional[str],
) -> None:
    """Render deployment parameters for the Lighthouse registration."""
    entries = _load(file_path)
    try:
        document = render_parameters(
            entries, managing_tenant_id, offer_name=offer_name, description=description
        )
    except AuthorizationListError as e:
        exit_with_error(e.message, EXIT_CONFIGURATION)

    content = json.dumps(document, indent=2)
    if output_path:
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(content + "\n")
        console.print(f"[green]✓[/green] Parameters written to {output_path}")
        console.print("\nDeploy with:")
        console.print("  az deployment sub create --location <region> \\")
        console.print("    --template-file <lighthouse-template.json> \\")
        console.print(f"    --parameters @{output_path}")
    else:
        click.echo(content)
