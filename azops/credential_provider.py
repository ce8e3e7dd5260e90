"""
Credential Provider Module

This module provides credential creation and explicit, subscription-bound
sessions. Every procedure receives the session(s) it operates on as arguments;
nothing relies on an ambient "current subscription" context, so interleaved
source and target calls cannot reach the wrong subscription.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from azure.core.credentials import TokenCredential
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError
from azure.identity import DefaultAzureCredential, ManagedIdentityCredential
from azure.keyvault.secrets import SecretClient
from azure.mgmt.authorization import AuthorizationManagementClient
from azure.mgmt.keyvault import KeyVaultManagementClient
from azure.mgmt.storage import StorageManagementClient
from azure.mgmt.subscription import SubscriptionClient
from azure.storage.blob import BlobServiceClient

from .config_manager import AuthConfig
from .exceptions import AzureSubscriptionError, MissingResourceError, wrap_azure_exception
from .utils.resource_id import parse_resource_group

logger = logging.getLogger(__name__)


class OperationSide(Enum):
    """
    Which end of a copy an operation targets.

    SOURCE: Reads from the origin subscription
    TARGET: Writes into the destination subscription
    """

    SOURCE = "source"
    TARGET = "target"


@dataclass(frozen=True)
class KeyVaultReference:
    """A Key Vault resolved inside a specific subscription."""

    name: str
    resource_group: str
    vault_uri: str
    resource_id: str


def create_credential(auth: Optional[AuthConfig] = None) -> TokenCredential:
    """
    Create the credential every session shares.

    Unattended runs (pipelines, automation accounts) log in with a managed
    identity; interactive runs use the default credential chain, which picks
    up an existing 'az login'.

    Args:
        auth: Authentication configuration

    Returns:
        Azure token credential
    """
    auth = auth or AuthConfig()
    if auth.use_managed_identity:
        logger.info("Authenticating with managed identity")
        if auth.managed_identity_client_id:
            return ManagedIdentityCredential(client_id=auth.managed_identity_client_id)
        return ManagedIdentityCredential()
    logger.debug("Authenticating with the default Azure credential chain")
    return DefaultAzureCredential()


class AzureSession:
    """
    A credential bound to exactly one subscription.

    Management clients are created lazily and cached per session, so each
    session only ever talks to its own subscription.

    Attributes:
        credential: Azure token credential
        subscription_id: Subscription every management call is scoped to
    """

    def __init__(self, credential: TokenCredential, subscription_id: str) -> None:
        if not subscription_id:
            raise AzureSubscriptionError("A subscription ID is required")
        self.credential = credential
        self.subscription_id = subscription_id
        self.subscription_name: Optional[str] = None
        self._keyvault_client: Optional[KeyVaultManagementClient] = None
        self._storage_client: Optional[StorageManagementClient] = None
        self._authorization_client: Optional[AuthorizationManagementClient] = None

    def __repr__(self) -> str:
        return f"AzureSession(subscription_id={self.subscription_id!r})"

    def verify(self) -> str:
        """
        Confirm the subscription exists, is enabled and is visible to the credential.

        Returns:
            Subscription display name

        Raises:
            AzureSubscriptionError: If the subscription cannot be used
        """
        if self.subscription_name is not None:
            return self.subscription_name

        try:
            subscription = SubscriptionClient(self.credential).subscriptions.get(
                self.subscription_id
            )
        except (ResourceNotFoundError, HttpResponseError) as e:
            raise AzureSubscriptionError(
                f"Subscription {self.subscription_id} is not accessible",
                subscription_id=self.subscription_id,
                cause=e,
            ) from e

        if subscription.subscription_id != self.subscription_id:
            raise AzureSubscriptionError(
                f"Subscription context mismatch: requested {self.subscription_id}, "
                f"got {subscription.subscription_id}",
                subscription_id=self.subscription_id,
            )

        state = getattr(subscription.state, "value", subscription.state)
        if state and str(state) != "Enabled":
            raise AzureSubscriptionError(
                f"Subscription {self.subscription_id} is not enabled (state: {state})",
                subscription_id=self.subscription_id,
            )

        self.subscription_name = subscription.display_name or self.subscription_id
        logger.info(
            f"Using subscription '{self.subscription_name}' ({self.subscription_id})"
        )
        return self.subscription_name

    @property
    def keyvault_management(self) -> KeyVaultManagementClient:
        if self._keyvault_client is None:
            self._keyvault_client = KeyVaultManagementClient(
                self.credential, self.subscription_id
            )
        return self._keyvault_client

    @property
    def storage_management(self) -> StorageManagementClient:
        if self._storage_client is None:
            self._storage_client = StorageManagementClient(
                self.credential, self.subscription_id
            )
        return self._storage_client

    @property
    def authorization(self) -> AuthorizationManagementClient:
        if self._authorization_client is None:
            self._authorization_client = AuthorizationManagementClient(
                self.credential, self.subscription_id
            )
        return self._authorization_client

    def find_key_vault(self, vault_name: str) -> KeyVaultReference:
        """
        Resolve a Key Vault by name inside this session's subscription.

        Raises:
            MissingResourceError: If no vault with that name exists here
            AzureError: If the vaults of the subscription cannot be listed
        """
        try:
            vaults = list(self.keyvault_management.vaults.list_by_subscription())
        except HttpResponseError as e:
            raise wrap_azure_exception(
                e, {"subscription_id": self.subscription_id, "vault_name": vault_name}
            ) from e

        for vault in vaults:
            if vault.name and vault.name.lower() == vault_name.lower():
                return KeyVaultReference(
                    name=vault.name,
                    resource_group=parse_resource_group(vault.id) or "",
                    vault_uri=vault.properties.vault_uri,
                    resource_id=vault.id,
                )
        raise MissingResourceError(
            f"Key Vault '{vault_name}' not found in subscription {self.subscription_id}",
            missing=[f"key vault {vault_name}"],
            resource_type="Microsoft.KeyVault/vaults",
        )

    def secret_client(self, vault_uri: str) -> SecretClient:
        return SecretClient(vault_url=vault_uri, credential=self.credential)

    def blob_service_client(self, account_url: str) -> BlobServiceClient:
        return BlobServiceClient(account_url=account_url, credential=self.credential)


class SessionProvider:
    """
    Provides the session for each side of a copy.

    When source and target subscriptions are the same, both sides share one
    session; otherwise each side gets its own, and every switch between them
    is logged.
    """

    def __init__(
        self,
        source_subscription_id: str,
        target_subscription_id: Optional[str] = None,
        credential: Optional[TokenCredential] = None,
        auth: Optional[AuthConfig] = None,
    ) -> None:
        self.source_subscription_id = source_subscription_id
        self.target_subscription_id = target_subscription_id or source_subscription_id
        self._credential = credential
        self._auth = auth
        self._sessions: Dict[str, AzureSession] = {}
        self._current_subscription_id: Optional[str] = None

    @property
    def credential(self) -> TokenCredential:
        if self._credential is None:
            self._credential = create_credential(self._auth)
        return self._credential

    def is_cross_subscription(self) -> bool:
        return self.source_subscription_id != self.target_subscription_id

    def get_session(self, side: OperationSide) -> AzureSession:
        """Get (or create) the session for one side of the operation."""
        subscription_id = (
            self.source_subscription_id
            if side == OperationSide.SOURCE
            else self.target_subscription_id
        )
        if subscription_id not in self._sessions:
            self._sessions[subscription_id] = AzureSession(
                self.credential, subscription_id
            )

        if self._current_subscription_id != subscription_id:
            self._log_switch(subscription_id, side)
            self._current_subscription_id = subscription_id

        return self._sessions[subscription_id]

    def verify_all(self) -> None:
        """Verify every subscription involved before anything is mutated."""
        self.get_session(OperationSide.SOURCE).verify()
        self.get_session(OperationSide.TARGET).verify()

    def _log_switch(self, subscription_id: str, side: OperationSide) -> None:
        # Show only the first 8 characters of subscription IDs in logs
        masked = (
            subscription_id[:8] + "..." if len(subscription_id) > 8 else subscription_id
        )
        logger.info(f"Using {side.value} subscription ({masked})")
