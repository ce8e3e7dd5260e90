"""Key Vault secret replication between two vaults.

Copies secrets from a source vault into a target vault, in the same or in a
different subscription. The source is never modified; every copy creates a new
version in the target carrying the source's value and metadata.

Every selected secret yields exactly one ``SecretOutcome``; a failure on one
secret never stops the run.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from azure.core.exceptions import (
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
)
from azure.keyvault.secrets import KeyVaultSecret, SecretClient

from ..config_manager import NetworkConfig, RetryConfig
from ..credential_provider import AzureSession
from ..exceptions import wrap_azure_exception
from ..utils.retry import retry_with_backoff
from .network_rules import (
    KeyVaultNetworkTarget,
    NetworkAccessGrant,
    get_public_ip,
    network_scoped_access_all,
)

logger = logging.getLogger(__name__)

REASON_ALREADY_COPIED = "already copied"
REASON_VALUE_DIFFERS = "value differs; use --force to overwrite"
REASON_NOT_IN_SOURCE = "not found in source vault"
REASON_DISABLED = "disabled in source vault"
REASON_MANAGED = "managed by Key Vault (certificate-backed)"


class SecretOutcomeStatus(str, Enum):
    COPIED = "copied"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class SecretRecord:
    """A secret's value plus the metadata a copy must carry over."""

    name: str
    value: Optional[str]
    expires_on: Optional[datetime] = None
    content_type: Optional[str] = None
    tags: Optional[Dict[str, str]] = None
    not_before: Optional[datetime] = None
    enabled: Optional[bool] = True

    @classmethod
    def from_secret(cls, secret: KeyVaultSecret) -> "SecretRecord":
        props = secret.properties
        return cls(
            name=secret.name,
            value=secret.value,
            expires_on=props.expires_on,
            content_type=props.content_type,
            tags=dict(props.tags) if props.tags else None,
            not_before=props.not_before,
            enabled=props.enabled,
        )


@dataclass
class SecretOutcome:
    name: str
    status: SecretOutcomeStatus
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name, "status": self.status.value}
        if self.reason:
            result["reason"] = self.reason
        return result


@dataclass
class SecretReplicationResult:
    """Summary of one replication run."""

    source_vault: str
    target_vault: str
    outcomes: List[SecretOutcome] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    network_grants: List[NetworkAccessGrant] = field(default_factory=list)

    def add(
        self, name: str, status: SecretOutcomeStatus, reason: Optional[str] = None
    ) -> SecretOutcome:
        outcome = SecretOutcome(name=name, status=status, reason=reason)
        self.outcomes.append(outcome)
        if status == SecretOutcomeStatus.FAILED:
            logger.error(f"Secret '{name}': failed ({reason})")
        elif reason:
            logger.info(f"Secret '{name}': {status.value} ({reason})")
        else:
            logger.info(f"Secret '{name}': {status.value}")
        return outcome

    def count(self, status: SecretOutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def cleanup_errors(self) -> List[str]:
        return [error for grant in self.network_grants for error in grant.cleanup_errors]

    @property
    def has_failures(self) -> bool:
        return self.count(SecretOutcomeStatus.FAILED) > 0 or bool(self.cleanup_errors)

    def summary(self) -> str:
        return (
            f"{self.count(SecretOutcomeStatus.COPIED)} copied, "
            f"{self.count(SecretOutcomeStatus.UPDATED)} updated, "
            f"{self.count(SecretOutcomeStatus.SKIPPED)} skipped, "
            f"{self.count(SecretOutcomeStatus.FAILED)} failed"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_vault": self.source_vault,
            "target_vault": self.target_vault,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "counts": {status.value: self.count(status) for status in SecretOutcomeStatus},
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "cleanup_errors": self.cleanup_errors,
        }


def select_secret_names(
    available: Sequence[str],
    include: Optional[Iterable[str]] = None,
    exclude: Optional[Iterable[str]] = None,
) -> Tuple[List[str], List[str]]:
    """
    Apply the include filter, then the exclude filter.

    Args:
        available: Secret names in the source vault, in retrieval order
        include: If given, only these names are selected
        exclude: Names removed after the include filter

    Returns:
        (selected names in retrieval order, include names absent from the source)
    """
    include_list = list(dict.fromkeys(include or []))
    excluded = set(exclude or [])

    if include_list:
        wanted = set(include_list)
        selected = [name for name in available if name in wanted]
        present = set(available)
        missing = [name for name in include_list if name not in present]
    else:
        selected = list(available)
        missing = []

    return [name for name in selected if name not in excluded], [
        name for name in missing if name not in excluded
    ]


class SecretReplicationService:
    """Copies secrets from one vault's client to another's."""

    def __init__(
        self,
        source_client: SecretClient,
        target_client: SecretClient,
        source_vault_name: str = "source",
        target_vault_name: str = "target",
        retry_config: Optional[RetryConfig] = None,
    ) -> None:
        self.source_client = source_client
        self.target_client = target_client
        self.source_vault_name = source_vault_name
        self.target_vault_name = target_vault_name
        self.retry_config = retry_config or RetryConfig()

    def _with_retry(self, operation, description: str):
        return retry_with_backoff(
            operation,
            description,
            max_retries=self.retry_config.max_retries,
            base_delay=self.retry_config.retry_delay,
        )

    def replicate(
        self,
        include: Optional[Iterable[str]] = None,
        exclude: Optional[Iterable[str]] = None,
        force: bool = False,
    ) -> SecretReplicationResult:
        """
        Copy selected secrets into the target vault.

        Args:
            include: Only copy these names (missing ones are reported as failed)
            exclude: Never copy these names
            force: Overwrite target secrets whose value differs

        Returns:
            SecretReplicationResult with one outcome per selected secret

        Raises:
            AzureError: If the source vault cannot be listed
        """
        result = SecretReplicationResult(
            source_vault=self.source_vault_name, target_vault=self.target_vault_name
        )
        logger.info(
            f"Copying secrets from '{self.source_vault_name}' to "
            f"'{self.target_vault_name}'" + (" (force)" if force else "")
        )

        try:
            properties = self._with_retry(
                lambda: list(self.source_client.list_properties_of_secrets()),
                f"list secrets in {self.source_vault_name}",
            )
        except (HttpResponseError, ServiceRequestError) as e:
            raise wrap_azure_exception(
                e, {"vault": self.source_vault_name, "operation": "list secrets"}
            ) from e

        by_name = {prop.name: prop for prop in properties}
        selected, missing = select_secret_names(list(by_name), include, exclude)
        logger.info(
            f"Found {len(by_name)} secret(s) in source, {len(selected)} selected"
        )

        for name in selected:
            prop = by_name[name]
            if prop.enabled is False:
                result.add(name, SecretOutcomeStatus.SKIPPED, REASON_DISABLED)
                continue
            if getattr(prop, "managed", False):
                result.add(name, SecretOutcomeStatus.SKIPPED, REASON_MANAGED)
                continue
            try:
                self._replicate_one(name, force, result)
            except (HttpResponseError, ServiceRequestError) as e:
                reason = getattr(e, "message", None) or str(e)
                result.add(name, SecretOutcomeStatus.FAILED, reason.splitlines()[0])

        for name in missing:
            result.add(name, SecretOutcomeStatus.FAILED, REASON_NOT_IN_SOURCE)

        result.completed_at = datetime.now(timezone.utc)
        logger.info(f"Secret replication finished: {result.summary()}")
        return result

    def _replicate_one(
        self, name: str, force: bool, result: SecretReplicationResult
    ) -> None:
        source = SecretRecord.from_secret(
            self._with_retry(
                lambda: self.source_client.get_secret(name),
                f"read secret '{name}' from {self.source_vault_name}",
            )
        )
        existing = self._get_target_value(name)

        if existing is None:
            self._write(source)
            result.add(name, SecretOutcomeStatus.COPIED)
        elif existing != source.value:
            if force:
                self._write(source)
                result.add(name, SecretOutcomeStatus.UPDATED)
            else:
                result.add(name, SecretOutcomeStatus.SKIPPED, REASON_VALUE_DIFFERS)
        else:
            result.add(name, SecretOutcomeStatus.SKIPPED, REASON_ALREADY_COPIED)

    def _get_target_value(self, name: str) -> Optional[str]:
        try:
            secret = self._with_retry(
                lambda: self.target_client.get_secret(name),
                f"read secret '{name}' from {self.target_vault_name}",
            )
        except ResourceNotFoundError:
            return None
        return secret.value

    def _write(self, record: SecretRecord) -> None:
        self._with_retry(
            lambda: self.target_client.set_secret(
                record.name,
                record.value,
                enabled=record.enabled,
                content_type=record.content_type,
                tags=record.tags,
                not_before=record.not_before,
                expires_on=record.expires_on,
            ),
            f"write secret '{record.name}' to {self.target_vault_name}",
        )


def replicate_between_vaults(
    source_session: AzureSession,
    target_session: AzureSession,
    source_vault: str,
    target_vault: str,
    include: Optional[Iterable[str]] = None,
    exclude: Optional[Iterable[str]] = None,
    force: bool = False,
    network_scoped: bool = False,
    network_config: Optional[NetworkConfig] = None,
    retry_config: Optional[RetryConfig] = None,
) -> SecretReplicationResult:
    """
    Resolve both vaults in their own subscriptions and replicate between them.

    Both subscriptions are verified and both vaults resolved before anything is
    written. With ``network_scoped`` the caller's public IP is permitted on both
    vaults for the duration of the run and removed afterwards.

    Raises:
        AzureSubscriptionError: If either subscription is unusable
        MissingResourceError: If either vault does not exist
    """
    source_session.verify()
    target_session.verify()
    source_ref = source_session.find_key_vault(source_vault)
    target_ref = target_session.find_key_vault(target_vault)

    service = SecretReplicationService(
        source_session.secret_client(source_ref.vault_uri),
        target_session.secret_client(target_ref.vault_uri),
        source_vault_name=source_ref.name,
        target_vault_name=target_ref.name,
        retry_config=retry_config,
    )

    if not network_scoped:
        return service.replicate(include=include, exclude=exclude, force=force)

    network_config = network_config or NetworkConfig()
    retries = (retry_config or RetryConfig()).max_retries
    ip_address = get_public_ip(network_config.public_ip_url)
    targets = [
        KeyVaultNetworkTarget(
            source_session, source_ref.resource_group, source_ref.name, retries
        ),
        KeyVaultNetworkTarget(
            target_session, target_ref.resource_group, target_ref.name, retries
        ),
    ]
    with network_scoped_access_all(
        targets,
        ip_address,
        settle_seconds=network_config.settle_seconds,
        manage_public_access=network_config.manage_public_access,
    ) as grants:
        result = service.replicate(include=include, exclude=exclude, force=force)
    # Grants are only final once the block has exited and cleanup has run
    result.network_grants = grants
    return result
