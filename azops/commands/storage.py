"""Blob storage copy commands.

This module provides the 'copy-blobs' command (one container, destination
recreated) and the 'copy-storage-account' command (every container).
"""

from typing import Optional

import click

from ..credential_provider import OperationSide
from ..services.azcopy import AzCopyRunner
from ..services.blob_replication import (
    BlobReplicationRequest,
    BlobReplicationService,
    copy_storage_account as run_account_copy,
)
from ..utils.resource_id import RE_CONTAINER_NAME, RE_STORAGE_ACCOUNT_NAME
from .base import COMMAND_ERRORS, command_context, exit_for_exception, exit_with_error, finish


def _validate_account(ctx: click.Context, param: click.Parameter, value: str) -> str:
    if value is not None and not RE_STORAGE_ACCOUNT_NAME.match(value):
        raise click.BadParameter("must be 3-24 lowercase letters and digits")
    return value


def _validate_container(
    ctx: click.Context, param: click.Parameter, value: Optional[str]
) -> Optional[str]:
    if value is not None and not RE_CONTAINER_NAME.match(value):
        raise click.BadParameter(
            "must be 3-63 lowercase letters, digits and single hyphens"
        )
    return value


@click.command("copy-blobs")
@click.option(
    "--subscription",
    "subscription_id",
    help="Source subscription ID (defaults to AZURE_SUBSCRIPTION_ID)",
)
@click.option(
    "--destination-subscription",
    "destination_subscription_id",
    help="Destination subscription ID (defaults to the source subscription)",
)
@click.option("--source-resource-group", required=True)
@click.option("--destination-resource-group", required=True)
@click.option("--source-storage", required=True, callback=_validate_account)
@click.option("--destination-storage", required=True, callback=_validate_account)
@click.option("--source-container", required=True, callback=_validate_container)
@click.option(
    "--destination-container",
    callback=_validate_container,
    help="Destination container (defaults to the source container name)",
)
@click.option(
    "--network-scoped",
    is_flag=True,
    default=False,
    help="Temporarily allow this machine's public IP on both storage firewalls",
)
@click.option("--json", "as_json", is_flag=True, help="Print a JSON result line")
@click.pass_context
def copy_blobs(
    ctx: click.Context,
    subscription_id: Optional[str],
    destination_subscription_id: Optional[str],
    source_resource_group: str,
    destination_resource_group: str,
    source_storage: str,
    destination_storage: str,
    source_container: str,
    destination_container: Optional[str],
    network_scoped: bool,
    as_json: bool,
) -> None:
    """Replace a destination container with a copy of a source container.

    The destination container is deleted (if present) and recreated empty,
    then every blob of the source container is copied with AzCopy.
    """
    cmd = command_context(ctx)
    config = cmd.get_config()
    subscription_id = cmd.require_subscription(subscription_id)
    provider = cmd.session_provider(subscription_id, destination_subscription_id)

    request = BlobReplicationRequest(
        source_resource_group=source_resource_group,
        source_account=source_storage,
        source_container=source_container,
        destination_resource_group=destination_resource_group,
        destination_account=destination_storage,
        destination_container=destination_container,
    )
    if (
        request.source_account == request.destination_account
        and request.source_container == request.destination_container
        and not provider.is_cross_subscription()
    ):
        exit_with_error("Source and destination container are the same")

    try:
        source_session = provider.get_session(OperationSide.SOURCE)
        destination_session = provider.get_session(OperationSide.TARGET)
        provider.verify_all()
        service = BlobReplicationService(
            source_session,
            destination_session,
            azcopy=AzCopyRunner(config.azcopy),
            polling=config.polling,
            retry_config=config.retry,
        )
        result = service.replicate(
            request, network_scoped=network_scoped, network_config=config.network
        )
    except COMMAND_ERRORS as e:
        exit_for_exception(e)

    click.echo(
        f"Blobs: {result.source_blob_count} in source, "
        f"{result.destination_blob_count} in destination"
        + ("" if result.counts_match else " (counts differ)")
    )
    for error in result.cleanup_errors:
        click.echo(f"Cleanup failed: {error}", err=True)

    finish("blob_replication", result.to_dict(), failed=result.has_failures, as_json=as_json)


@click.command("copy-storage-account")
@click.option("--source-storage", required=True, callback=_validate_account)
@click.option("--destination-storage", required=True, callback=_validate_account)
@click.pass_context
def copy_storage_account(
    ctx: click.Context, source_storage: str, destination_storage: str
) -> None:
    """Copy every container of one storage account into another with AzCopy."""
    cmd = command_context(ctx)
    config = cmd.get_config()
    if source_storage == destination_storage:
        exit_with_error("Source and destination storage account are the same")

    try:
        run_account_copy(
            source_storage, destination_storage, azcopy=AzCopyRunner(config.azcopy)
        )
    except COMMAND_ERRORS as e:
        exit_for_exception(e)

    click.echo(f"Copied storage account {source_storage} to {destination_storage}")
