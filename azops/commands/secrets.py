"""Key Vault secret copy command.

This module provides the 'copy-secrets' command, which copies secrets between
two Key Vaults in the same or in different subscriptions.
"""

from typing import Optional, Tuple

import click

from ..credential_provider import OperationSide
from ..services.secret_replication import SecretOutcomeStatus, replicate_between_vaults
from .base import COMMAND_ERRORS, command_context, exit_for_exception, finish


def _split(values: Tuple[str, ...]) -> Tuple[str, ...]:
    # Accept both "--name a --name b" and "--name a,b"
    return tuple(
        part.strip() for value in values for part in value.split(",") if part.strip()
    )


@click.command("copy-secrets")
@click.option("--source-vault", required=True, help="Name of the vault to copy from")
@click.option("--target-vault", required=True, help="Name of the vault to copy into")
@click.option(
    "--subscription",
    "subscription_id",
    help="Source subscription ID (defaults to AZURE_SUBSCRIPTION_ID)",
)
@click.option(
    "--target-subscription",
    "target_subscription_id",
    help="Target subscription ID (defaults to the source subscription)",
)
@click.option(
    "--name",
    "names",
    multiple=True,
    help="Only copy these secrets (repeatable or comma-separated)",
)
@click.option(
    "--skip",
    "skip",
    multiple=True,
    help="Never copy these secrets (repeatable or comma-separated)",
)
@click.option(
    "--force",
    is_flag=True,
    default=False,
    help="Overwrite target secrets whose value differs from the source",
)
@click.option(
    "--network-scoped",
    is_flag=True,
    default=False,
    help="Temporarily allow this machine's public IP on both vault firewalls",
)
@click.option("--json", "as_json", is_flag=True, help="Print a JSON result line")
@click.pass_context
def copy_secrets(
    ctx: click.Context,
    source_vault: str,
    target_vault: str,
    subscription_id: Optional[str],
    target_subscription_id: Optional[str],
    names: Tuple[str, ...],
    skip: Tuple[str, ...],
    force: bool,
    network_scoped: bool,
    as_json: bool,
) -> None:
    """Copy Key Vault secrets from one vault to another.

    Secrets missing from the target are created. Secrets whose value differs
    are only overwritten with --force. Expiration, content type and tags are
    carried over; the source vault is never modified.
    """
    cmd = command_context(ctx)
    config = cmd.get_config()
    subscription_id = cmd.require_subscription(subscription_id)
    provider = cmd.session_provider(subscription_id, target_subscription_id)

    try:
        result = replicate_between_vaults(
            provider.get_session(OperationSide.SOURCE),
            provider.get_session(OperationSide.TARGET),
            source_vault,
            target_vault,
            include=_split(names) or None,
            exclude=_split(skip),
            force=force,
            network_scoped=network_scoped,
            network_config=config.network,
            retry_config=config.retry,
        )
    except COMMAND_ERRORS as e:
        exit_for_exception(e)

    for outcome in result.outcomes:
        if outcome.status == SecretOutcomeStatus.FAILED:
            click.echo(f"  FAILED  {outcome.name}: {outcome.reason}", err=True)
    click.echo(f"Secrets: {result.summary()}")
    for error in result.cleanup_errors:
        click.echo(f"Cleanup failed: {error}", err=True)

    finish(
        "secret_replication", result.to_dict(), failed=result.has_failures, as_json=as_json
    )
