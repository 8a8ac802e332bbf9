"""Console rendering of provisioning results."""

from typing import Iterable, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .authorizations import role_display_name
from .models import AuthorizationEntry, ChangeSummary, ProvisioningRequest


def _names(values: Iterable[str]) -> str:
    joined = ", ".join(values)
    return joined or "-"


def build_summary_table(summary: ChangeSummary, request: ProvisioningRequest) -> Table:
    """Table of created versus found for every step."""
    table = Table(title=f"Provisioning summary: {request.customer_prefix}")
    table.add_column("Resource", style="cyan")
    table.add_column("Name")
    table.add_column("Created", style="green")
    table.add_column("Already present", style="blue")

    def flag(value: bool) -> str:
        return "yes" if value else "-"

    table.add_row(
        "Resource group",
        request.resource_group_name,
        flag(summary.resource_group_created),
        flag(summary.resource_group_found),
    )
    table.add_row(
        "Managed identity",
        request.identity_name,
        flag(summary.umi_created),
        flag(summary.umi_found),
    )
    table.add_row(
        "Role assignments",
        request.subscription_scope,
        _names(summary.role_assignments),
        _names(summary.roles_already_assigned),
    )
    table.add_row(
        "Application",
        request.application_display_name,
        flag(summary.application_created),
        flag(summary.application_found),
    )
    table.add_row(
        "Service principal",
        summary.service_principal.app_id if summary.service_principal else "",
        flag(summary.service_principal_created),
        flag(summary.service_principal_found),
    )
    table.add_row("Client secret", "", flag(summary.secret_created), "-")
    table.add_row(
        "Graph permissions",
        "Microsoft Graph",
        _names(summary.graph_permissions),
        _names(summary.graph_permissions_already_assigned),
    )
    table.add_row(
        "Application owner",
        request.identity_name,
        flag(summary.ownership_added),
        flag(summary.ownership_already_present),
    )
    return table


def print_summary(
    summary: ChangeSummary,
    request: ProvisioningRequest,
    console: Optional[Console] = None,
) -> None:
    """Print the summary table, any warnings and the one-time secret."""
    console = console or Console()
    console.print(build_summary_table(summary, request))

    if summary.warnings:
        console.print("\n[yellow]Warnings:[/yellow]")
        for warning in summary.warnings:
            console.print(f"  [yellow]![/yellow] {escape(warning)}")

    if summary.secret is not None and summary.application is not None:
        secret = summary.secret
        console.print(
            Panel(
                f"Application (client) id: {summary.application.app_id}\n"
                f"Secret: [bold]{escape(secret.secret_text)}[/bold]\n"
                f"Expires: {secret.end_date_time.isoformat()}\n\n"
                "This value is shown once and is not stored. Copy it now.",
                title="Bootstrap client secret",
                border_style="red",
            )
        )


def build_authorizations_table(entries: Iterable[AuthorizationEntry]) -> Table:
    table = Table(title="Lighthouse authorizations")
    table.add_column("Principal", style="cyan")
    table.add_column("Principal id", style="dim")
    table.add_column("Role", style="green")
    table.add_column("Delegated roles", style="blue")
    for entry in entries:
        table.add_row(
            entry.principal_id_display_name,
            entry.principal_id,
            role_display_name(entry.role_definition_id),
            "\n".join(
                role_display_name(role_id)
                for role_id in entry.delegated_role_definition_ids
            )
            or "-",
        )
    return table
