"""App registration command.

This module provides the 'app-registration' command for creating Microsoft
Entra ID application registrations with the Azure CLI.
"""

from typing import Optional

import click

from ..credential_provider import OperationSide
from ..services.app_registration import AppRegistrationRequest, AppRegistrationService
from ..utils.az_cli import is_az_cli_available
from .base import COMMAND_ERRORS, command_context, exit_for_exception, exit_with_error, finish


@click.command("app-registration")
@click.option("--name", required=True, help="Display name for the app registration")
@click.option(
    "--tenant-id",
    required=False,
    help="Tenant ID (defaults to the tenant of the current 'az login')",
)
@click.option("--redirect-uri", help="Web redirect URI for the app registration")
@click.option(
    "--create-secret/--no-create-secret",
    default=True,
    show_default=True,
    help="Create a client secret for the app registration",
)
@click.option(
    "--secret-years",
    type=click.IntRange(1, 2),
    default=1,
    show_default=True,
    help="Client secret lifetime in years",
)
@click.option("--vault-name", help="Store the client secret in this Key Vault")
@click.option("--secret-name", help="Secret name to use in --vault-name")
@click.option(
    "--subscription",
    "subscription_id",
    help="Subscription of --vault-name (defaults to AZURE_SUBSCRIPTION_ID)",
)
@click.option("--json", "as_json", is_flag=True, help="Print a JSON result line")
@click.pass_context
def app_registration(
    ctx: click.Context,
    name: str,
    tenant_id: Optional[str],
    redirect_uri: Optional[str],
    create_secret: bool,
    secret_years: int,
    vault_name: Optional[str],
    secret_name: Optional[str],
    subscription_id: Optional[str],
    as_json: bool,
) -> None:
    """Create a Microsoft Entra ID app registration.

    An existing registration with the same display name is reused. When
    --vault-name is given the client secret is stored there instead of being
    printed.
    """
    cmd = command_context(ctx)
    cmd.get_config()

    try:
        request = AppRegistrationRequest(
            name=name,
            tenant_id=tenant_id,
            redirect_uri=redirect_uri,
            create_secret=create_secret,
            secret_years=secret_years,
            vault_name=vault_name,
            secret_name=secret_name,
        ).validate()
    except ValueError as e:
        exit_with_error(f"Input validation error: {e}")

    if not is_az_cli_available():
        exit_with_error("Azure CLI ('az') is required; install it and run 'az login'")

    vault_session = None
    if request.vault_name:
        subscription_id = cmd.require_subscription(subscription_id)
        vault_session = cmd.session_provider(subscription_id).get_session(
            OperationSide.TARGET
        )

    try:
        result = AppRegistrationService().register(request, vault_session=vault_session)
    except COMMAND_ERRORS as e:
        exit_for_exception(e)

    click.echo(
        f"App registration '{result.display_name}' "
        f"{'created' if result.created else 'already existed'}"
    )
    click.echo(f"AZURE_TENANT_ID={result.tenant_id}")
    click.echo(f"AZURE_CLIENT_ID={result.app_id}")
    if result.stored_in_vault:
        click.echo(
            f"Client secret stored as '{request.secret_name}' in {result.stored_in_vault}"
        )
    elif result.client_secret:
        if result.vault_error:
            click.echo(
                f"Warning: could not store the client secret in {request.vault_name}: "
                f"{result.vault_error}",
                err=True,
            )
        click.echo(f"AZURE_CLIENT_SECRET={result.client_secret}")
        click.echo("Store this secret now; it cannot be retrieved again.")

    finish(
        "app_registration", result.to_dict(), failed=result.has_failures, as_json=as_json
    )
