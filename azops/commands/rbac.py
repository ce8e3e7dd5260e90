"""RBAC reconciliation command.

This module provides the 'rbac' command, which compares the role assignments
of a subscription with a declarative JSON file and optionally imports the
file into the subscription or exports the subscription into the file.
"""

from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from ..credential_provider import OperationSide
from ..services.rbac_models import (
    ImportOutcomeStatus,
    RbacReconciliationResult,
    ReconciliationMode,
    RoleAssignment,
)
from ..services.rbac_reconciliation import RbacReconciliationService
from .base import COMMAND_ERRORS, command_context, exit_for_exception, finish


def _render_section(
    console: Console, title: str, style: str, assignments: List[RoleAssignment]
) -> None:
    table = Table(
        title=f"{title} ({len(assignments)})", show_header=True, header_style="bold magenta"
    )
    table.add_column("Display Name", style=style)
    table.add_column("Object ID", style="dim")
    table.add_column("Role", style="green")
    table.add_column("Scope", style="blue")
    for assignment in assignments:
        table.add_row(
            assignment.display_name,
            assignment.object_id,
            assignment.role_definition_name,
            assignment.scope,
        )
    console.print(table)


def _render_result(result: RbacReconciliationResult, console: Console) -> None:
    comparison = result.comparison
    if comparison.config_only:
        _render_section(console, "To be created", "yellow", comparison.config_only)
    if comparison.live_only:
        _render_section(console, "Unmanaged / drift", "red", comparison.live_only)
    console.print(
        f"[bold]{len(comparison.in_both)}[/bold] in sync, "
        f"[bold]{len(comparison.config_only)}[/bold] to be created, "
        f"[bold]{len(comparison.live_only)}[/bold] unmanaged"
        + (
            f" ({result.excluded_count} platform-managed excluded)"
            if result.excluded_count
            else ""
        )
    )

    if result.mode == ReconciliationMode.IMPORT:
        for outcome in result.import_outcomes:
            if outcome.status != ImportOutcomeStatus.CREATED:
                console.print(
                    f"[red]{outcome.status.value.upper()}[/red] {outcome.assignment}: "
                    f"{outcome.reason}"
                )
        console.print(
            f"Import: {result.count(ImportOutcomeStatus.CREATED)} created, "
            f"{result.count(ImportOutcomeStatus.CONFLICT)} conflicts, "
            f"{result.count(ImportOutcomeStatus.FAILED)} failed"
        )
    elif result.mode == ReconciliationMode.EXPORT:
        console.print(f"Exported {result.exported_count} role assignment(s)")


@click.command("rbac")
@click.option(
    "--config-file",
    required=True,
    type=click.Path(dir_okay=False),
    help="Role assignment configuration file (JSON)",
)
@click.option(
    "--mode",
    type=click.Choice([m.value for m in ReconciliationMode]),
    default=ReconciliationMode.COMPARE.value,
    show_default=True,
    help="compare (read-only), import (create missing) or export (write live state)",
)
@click.option(
    "--subscription",
    "subscription_id",
    help="Subscription ID (defaults to AZURE_SUBSCRIPTION_ID)",
)
@click.option(
    "--exclude-prefix",
    "exclude_prefixes",
    multiple=True,
    help="Also exclude principals whose display name starts with this prefix",
)
@click.option("--json", "as_json", is_flag=True, help="Print a JSON result line")
@click.pass_context
def rbac(
    ctx: click.Context,
    config_file: str,
    mode: str,
    subscription_id: Optional[str],
    exclude_prefixes: Tuple[str, ...],
    as_json: bool,
) -> None:
    """Compare, import or export subscription role assignments."""
    cmd = command_context(ctx)
    config = cmd.get_config()
    subscription_id = cmd.require_subscription(subscription_id)
    session = cmd.session_provider(subscription_id).get_session(OperationSide.SOURCE)

    try:
        service = RbacReconciliationService(
            session,
            rbac_config=config.rbac,
            retry_config=config.retry,
            exclude_prefixes=exclude_prefixes,
        )
        result = service.run(ReconciliationMode(mode), config_file)
    except COMMAND_ERRORS as e:
        exit_for_exception(e)

    _render_result(result, Console())
    finish("rbac_reconciliation", result.to_dict(), failed=result.has_failures, as_json=as_json)
