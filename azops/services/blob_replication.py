"""Blob container replication between storage accounts.

The destination container is treated as a unit: if it exists it is deleted and
recreated empty, then the source container is copied into it with AzCopy.
Container deletion and creation are asynchronous on the provider side and are
observed through bounded polls.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from azure.core.exceptions import (
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
)
from azure.mgmt.storage.models import BlobContainer

from ..config_manager import AzCopyConfig, NetworkConfig, PollingConfig, RetryConfig
from ..credential_provider import AzureSession
from ..exceptions import MissingResourceError
from ..utils.retry import is_transient_error, poll_until, retry_with_backoff
from .azcopy import AzCopyRunner, blob_account_url
from .network_rules import (
    NetworkAccessGrant,
    StorageAccountNetworkTarget,
    get_public_ip,
    network_scoped_access_all,
)

logger = logging.getLogger(__name__)


@dataclass
class BlobReplicationRequest:
    source_resource_group: str
    source_account: str
    source_container: str
    destination_resource_group: str
    destination_account: str
    destination_container: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.destination_container:
            self.destination_container = self.source_container


@dataclass
class BlobReplicationResult:
    request: BlobReplicationRequest
    destination_recreated: bool = False
    copy_performed: bool = False
    source_blob_count: Optional[int] = None
    destination_blob_count: Optional[int] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    network_grants: List[NetworkAccessGrant] = field(default_factory=list)

    @property
    def counts_match(self) -> bool:
        return (
            self.source_blob_count is not None
            and self.source_blob_count == self.destination_blob_count
        )

    @property
    def cleanup_errors(self) -> List[str]:
        return [error for grant in self.network_grants for error in grant.cleanup_errors]

    @property
    def has_failures(self) -> bool:
        return bool(self.cleanup_errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": f"{self.request.source_account}/{self.request.source_container}",
            "destination": (
                f"{self.request.destination_account}/"
                f"{self.request.destination_container}"
            ),
            "destination_recreated": self.destination_recreated,
            "copy_performed": self.copy_performed,
            "source_blob_count": self.source_blob_count,
            "destination_blob_count": self.destination_blob_count,
            "counts_match": self.counts_match,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "cleanup_errors": self.cleanup_errors,
        }


def _is_retryable_container_error(exc: BaseException) -> bool:
    # A just-deleted container name stays reserved for a while after the delete
    if isinstance(exc, ResourceExistsError) or (
        isinstance(exc, HttpResponseError) and getattr(exc, "status_code", None) == 409
    ):
        return "beingdeleted" in str(exc).replace(" ", "").lower()
    return is_transient_error(exc)


def _blob_endpoint(account_model: Any) -> str:
    endpoints = getattr(account_model, "primary_endpoints", None)
    return getattr(endpoints, "blob", None) or blob_account_url(account_model.name)


class BlobReplicationService:
    """Replaces a destination container with a copy of a source container."""

    def __init__(
        self,
        source_session: AzureSession,
        destination_session: AzureSession,
        azcopy: Optional[AzCopyRunner] = None,
        polling: Optional[PollingConfig] = None,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.source_session = source_session
        self.destination_session = destination_session
        self.azcopy = azcopy or AzCopyRunner()
        self.polling = polling or PollingConfig()
        self.retry_config = retry_config or RetryConfig()
        self._sleep = sleep
        self._clock = clock

    def _with_retry(self, operation, description: str, is_retryable=is_transient_error):
        return retry_with_backoff(
            operation,
            description,
            max_retries=self.retry_config.max_retries,
            base_delay=self.retry_config.retry_delay,
            is_retryable=is_retryable,
            sleep=self._sleep,
        )

    def _get_account(self, session: AzureSession, resource_group: str, name: str):
        try:
            return self._with_retry(
                lambda: session.storage_management.storage_accounts.get_properties(
                    resource_group, name
                ),
                f"read storage account {name}",
            )
        except ResourceNotFoundError:
            return None

    def container_exists(
        self, session: AzureSession, resource_group: str, account: str, container: str
    ) -> bool:
        try:
            self._with_retry(
                lambda: session.storage_management.blob_containers.get(
                    resource_group, account, container
                ),
                f"read container {account}/{container}",
            )
            return True
        except ResourceNotFoundError:
            return False

    def check_preconditions(self, request: BlobReplicationRequest) -> Tuple[Any, Any]:
        """
        Verify both accounts and the source container exist.

        Returns:
            (source account, destination account) management-plane models

        Raises:
            MissingResourceError: Listing every failed precondition
        """
        missing: List[str] = []
        source_account = self._get_account(
            self.source_session, request.source_resource_group, request.source_account
        )
        if source_account is None:
            missing.append(
                f"source storage account '{request.source_account}' in resource "
                f"group '{request.source_resource_group}'"
            )
        elif not self.container_exists(
            self.source_session,
            request.source_resource_group,
            request.source_account,
            request.source_container,
        ):
            missing.append(
                f"source container '{request.source_container}' in account "
                f"'{request.source_account}'"
            )

        destination_account = self._get_account(
            self.destination_session,
            request.destination_resource_group,
            request.destination_account,
        )
        if destination_account is None:
            missing.append(
                f"destination storage account '{request.destination_account}' in "
                f"resource group '{request.destination_resource_group}'"
            )

        if missing:
            for item in missing:
                logger.error(f"Missing {item}")
            raise MissingResourceError(
                f"{len(missing)} precondition(s) failed: {'; '.join(missing)}",
                missing=missing,
                resource_type="Microsoft.Storage",
            )
        return source_account, destination_account

    def _poll(self, condition: Callable[[], bool], description: str) -> int:
        return poll_until(
            condition,
            description,
            interval=self.polling.interval,
            timeout=self.polling.max_wait,
            sleep=self._sleep,
            clock=self._clock,
        )

    def recreate_destination(self, request: BlobReplicationRequest) -> bool:
        """
        Delete the destination container if present, then create it empty.

        Returns:
            True if an existing container was deleted first
        """
        session = self.destination_session
        rg = request.destination_resource_group
        account = request.destination_account
        container = request.destination_container

        def exists() -> bool:
            return self.container_exists(session, rg, account, container)

        deleted = False
        if exists():
            logger.info(f"Deleting existing destination container {account}/{container}")
            self._with_retry(
                lambda: session.storage_management.blob_containers.delete(
                    rg, account, container
                ),
                f"delete container {account}/{container}",
            )
            self._poll(lambda: not exists(), f"deletion of {account}/{container}")
            deleted = True
            if self.polling.container_cooldown:
                logger.info(
                    f"Waiting {self.polling.container_cooldown}s before recreating "
                    f"{account}/{container}"
                )
                self._sleep(self.polling.container_cooldown)

        logger.info(f"Creating destination container {account}/{container}")
        self._with_retry(
            lambda: session.storage_management.blob_containers.create(
                rg, account, container, BlobContainer()
            ),
            f"create container {account}/{container}",
            is_retryable=_is_retryable_container_error,
        )
        self._poll(exists, f"creation of {account}/{container}")
        return deleted

    def count_blobs(self, session: AzureSession, account_model: Any, container: str) -> int:
        container_client = session.blob_service_client(
            _blob_endpoint(account_model)
        ).get_container_client(container)
        return self._with_retry(
            lambda: sum(1 for _ in container_client.list_blobs()),
            f"count blobs in {account_model.name}/{container}",
        )

    def _container_url(self, account_model: Any, container: str) -> str:
        return f"{_blob_endpoint(account_model).rstrip('/')}/{container}"

    def replicate(
        self,
        request: BlobReplicationRequest,
        network_scoped: bool = False,
        network_config: Optional[NetworkConfig] = None,
    ) -> BlobReplicationResult:
        """
        Replace the destination container with a copy of the source container.

        Args:
            request: Source and destination coordinates
            network_scoped: Temporarily permit the caller IP on both accounts
            network_config: Network wrapper settings

        Returns:
            BlobReplicationResult with blob counts; ``counts_match`` is informational

        Raises:
            MissingResourceError: If any precondition fails (nothing is modified)
            PollTimeoutError: If container deletion or creation is not observed in time
            AzCopyError: If the copy fails
        """
        source_account, destination_account = self.check_preconditions(request)
        result = BlobReplicationResult(request=request)

        if not network_scoped:
            self._replicate(request, source_account, destination_account, result)
            return result

        network_config = network_config or NetworkConfig()
        ip_address = get_public_ip(network_config.public_ip_url)
        targets = [
            StorageAccountNetworkTarget(
                self.source_session,
                request.source_resource_group,
                request.source_account,
                self.retry_config.max_retries,
            ),
            StorageAccountNetworkTarget(
                self.destination_session,
                request.destination_resource_group,
                request.destination_account,
                self.retry_config.max_retries,
            ),
        ]
        with network_scoped_access_all(
            targets,
            ip_address,
            settle_seconds=network_config.settle_seconds,
            manage_public_access=network_config.manage_public_access,
            sleep=self._sleep,
        ) as grants:
            result.network_grants = grants
            self._replicate(request, source_account, destination_account, result)
        return result

    def _replicate(
        self,
        request: BlobReplicationRequest,
        source_account: Any,
        destination_account: Any,
        result: BlobReplicationResult,
    ) -> None:
        result.destination_recreated = self.recreate_destination(request)

        existing = self.count_blobs(
            self.destination_session, destination_account, request.destination_container
        )
        if existing == 0:
            self.azcopy.copy_container(
                self._container_url(source_account, request.source_container),
                self._container_url(destination_account, request.destination_container),
            )
            result.copy_performed = True
        else:
            logger.warning(
                f"Destination container already holds {existing} blob(s); skipping copy"
            )

        result.source_blob_count = self.count_blobs(
            self.source_session, source_account, request.source_container
        )
        result.destination_blob_count = self.count_blobs(
            self.destination_session, destination_account, request.destination_container
        )
        result.completed_at = datetime.now(timezone.utc)

        if result.counts_match:
            logger.info(
                f"Blob counts match: {result.source_blob_count} source, "
                f"{result.destination_blob_count} destination"
            )
        else:
            logger.warning(
                f"Blob counts differ: {result.source_blob_count} source, "
                f"{result.destination_blob_count} destination"
            )


def copy_storage_account(
    source_account: str, destination_account: str, azcopy: Optional[AzCopyRunner] = None
) -> None:
    """Copy every container of ``source_account`` into ``destination_account``."""
    azcopy = azcopy or AzCopyRunner(AzCopyConfig())
    logger.info(
        f"Copying storage account '{source_account}' to '{destination_account}'"
    )
    azcopy.copy_account(source_account, destination_account)
    logger.info("Storage account copy completed")
