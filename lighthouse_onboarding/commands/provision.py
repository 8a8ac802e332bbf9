"""lighthouse-provision: provision the Sentinel ingestion identity.

Creates, in the customer subscription, whatever is still missing of:
- resource group rg-<prefix>-sentinel-ingestion
- managed identity umi-<prefix>-sentinel-ingestion with its role assignments
- application <PREFIX>-Sentinel-Ingestion and its service principal
- Microsoft Graph application permissions and application ownership

A new bootstrap client secret is issued on every run and printed once.
"""

import json
from typing import Optional

import click
from rich.console import Console

from ..constants import SUPPORTED_REGIONS
from ..exceptions import OnboardingError
from ..models import ChangeSummary, ProvisioningRequest
from ..orchestrator import provision
from ..reporting import print_summary
from .base import async_command, exit_for_exception, load_config

console = Console()


def summary_document(summary: ChangeSummary) -> dict:
    """Summary plus the one-time application credentials, for --json."""
    document = summary.to_dict()
    if summary.application is not None:
        document["ApplicationId"] = summary.application.app_id
    if summary.identity is not None:
        document["ManagedIdentityClientId"] = summary.identity.client_id
        document["ManagedIdentityPrincipalId"] = summary.identity.principal_id
    if summary.secret is not None:
        document["ClientSecret"] = summary.secret.secret_text
        document["ClientSecretExpires"] = summary.secret.end_date_time.isoformat()
    return document


@click.command(name="lighthouse-provision")
@click.option(
    "--customer-prefix",
    required=True,
    help="Short customer name used in resource names (at least 3 characters)",
)
@click.option(
    "--subscription",
    "subscription_id",
    required=True,
    help="Customer subscription ID (GUID)",
)
@click.option(
    "--region",
    required=True,
    type=click.Choice(SUPPORTED_REGIONS, case_sensitive=False),
    help="Azure region for the resource group and managed identity",
)
@click.option(
    "--skip-module-install",
    is_flag=True,
    default=False,
    help="Do not check for or install the Azure SDK modules",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Logging level (default: LOG_LEVEL or INFO)",
)
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    default=False,
    help="Print the summary as JSON instead of a table",
)
@async_command
async def provision_command(
    customer_prefix: str,
    subscription_id: str,
    region: str,
    skip_module_install: bool,
    log_level: Optional[str],
    json_output: bool,
) -> None:
    """Provision the Sentinel ingestion identity in a customer subscription.

    Safe to re-run: every step checks live state and creates only what is
    missing.

    Example:
        lighthouse-provision --customer-prefix ACME \\
            --subscription 11111111-1111-1111-1111-111111111111 \\
            --region eastus
    """
    config = load_config(log_level)
    config.log_configuration_summary()

    try:
        request = ProvisioningRequest.create(
            customer_prefix, subscription_id, region, skip_module_install
        )
        summary = await provision(
            request.customer_prefix,
            request.subscription_id,
            request.region,
            request.skip_module_install,
            config=config,
        )
    except OnboardingError as e:
        exit_for_exception(e)

    if json_output:
        click.echo(json.dumps(summary_document(summary), indent=2))
        return

    print_summary(summary, request, console)
