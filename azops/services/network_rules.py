"""Temporary network access for firewalled Key Vaults and storage accounts.

Data-plane calls from an operator workstation or CI agent are rejected when the
target resource only accepts traffic from an allow-list. ``network_scoped_access``
opens the resource to the caller's public IP for the duration of a block and
puts it back the way it was afterwards:

- Only the rule this wrapper added is removed; pre-existing rules are never touched
- The public network access switch is restored to its exact prior value
- When the caller is already permitted, nothing is mutated at all
- Cleanup failures are logged and recorded on the grant, never raised over the
  block's own error
"""

import ipaddress
import logging
import time
from abc import ABC, abstractmethod
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Optional, Sequence

import requests
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError
from azure.mgmt.keyvault.models import IPRule as VaultIPRule
from azure.mgmt.keyvault.models import NetworkRuleSet as VaultNetworkRuleSet
from azure.mgmt.keyvault.models import VaultPatchParameters, VaultPatchProperties
from azure.mgmt.storage.models import IPRule as StorageIPRule
from azure.mgmt.storage.models import NetworkRuleSet as StorageNetworkRuleSet
from azure.mgmt.storage.models import StorageAccountUpdateParameters

from ..credential_provider import AzureSession
from ..exceptions import MissingResourceError, NetworkRuleError, PublicIpLookupError
from ..timeout_config import Timeouts
from ..utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

__all__ = [
    "NetworkAccessState",
    "NetworkAccessGrant",
    "NetworkRuleTarget",
    "KeyVaultNetworkTarget",
    "StorageAccountNetworkTarget",
    "get_public_ip",
    "ip_in_rules",
    "ip_is_permitted",
    "network_scoped_access",
    "network_scoped_access_all",
]

PUBLIC_ACCESS_ENABLED = "Enabled"
PUBLIC_ACCESS_DISABLED = "Disabled"
DEFAULT_ACTION_ALLOW = "Allow"


def _enum_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", value))


@dataclass(frozen=True)
class NetworkAccessState:
    """Snapshot of a resource's firewall taken before anything is changed."""

    default_action: Optional[str]
    ip_rules: List[str] = field(default_factory=list)
    public_network_access: Optional[str] = None

    @property
    def public_access_disabled(self) -> bool:
        return (self.public_network_access or "").lower() == "disabled"

    @property
    def default_allows(self) -> bool:
        return (self.default_action or DEFAULT_ACTION_ALLOW).lower() == "allow"


@dataclass
class NetworkAccessGrant:
    """What the wrapper changed on one resource, and what went wrong undoing it."""

    resource_id: str
    ip_address: str
    prior_state: NetworkAccessState
    rule_added: bool = False
    public_access_changed: bool = False
    cleanup_errors: List[str] = field(default_factory=list)

    @property
    def mutated(self) -> bool:
        return self.rule_added or self.public_access_changed


def ip_in_rules(ip_address: str, rules: Sequence[str]) -> bool:
    """True when ``ip_address`` equals a rule address or falls inside a rule's CIDR range."""
    address = ipaddress.ip_address(ip_address)
    for rule in rules:
        try:
            if address in ipaddress.ip_network(rule.strip(), strict=False):
                return True
        except ValueError:
            logger.debug(f"Ignoring unparseable IP rule: {rule!r}")
    return False


def ip_is_permitted(state: NetworkAccessState, ip_address: str) -> bool:
    """Whether the resource already accepts traffic from ``ip_address``."""
    if state.public_access_disabled:
        return False
    return state.default_allows or ip_in_rules(ip_address, state.ip_rules)


def get_public_ip(
    url: str = "https://api.ipify.org",
    timeout: Optional[int] = None,
    session: Optional[requests.Session] = None,
) -> str:
    """
    Determine the caller's public IP address.

    Args:
        url: HTTPS endpoint returning the address as plain text
        timeout: Request timeout in seconds
        session: Optional requests session (injected by tests)

    Returns:
        The public IP address as a string

    Raises:
        PublicIpLookupError: If the lookup fails or returns something that is
            not an IP address
    """
    http = session or requests
    timeout = timeout or Timeouts.PUBLIC_IP_LOOKUP
    try:
        response = http.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise PublicIpLookupError(
            f"Could not determine public IP address: {e}", url=url, cause=e
        ) from e

    candidate = response.text.strip()
    try:
        ipaddress.ip_address(candidate)
    except ValueError as e:
        raise PublicIpLookupError(
            f"Public IP lookup returned an invalid address: {candidate[:64]!r}",
            url=url,
            cause=e,
        ) from e

    logger.info(f"Caller public IP address: {candidate}")
    return candidate


class NetworkRuleTarget(ABC):
    """A resource whose firewall the wrapper can read and adjust."""

    resource_type: str = "resource"

    def __init__(
        self, session: AzureSession, resource_group: str, name: str, max_retries: int = 3
    ) -> None:
        self.session = session
        self.resource_group = resource_group
        self.name = name
        self.max_retries = max_retries

    @property
    def display_name(self) -> str:
        return f"{self.resource_type} '{self.name}'"

    @property
    @abstractmethod
    def resource_id(self) -> str:
        """ARM resource ID."""

    @abstractmethod
    def fetch_state(self) -> NetworkAccessState:
        """Read the current firewall state.

        Raises:
            MissingResourceError: If the resource does not exist
        """

    @abstractmethod
    def add_ip_rule(self, ip_address: str) -> None:
        """Append a permit rule for ``ip_address``, keeping every existing rule."""

    @abstractmethod
    def remove_ip_rule(self, ip_address: str) -> None:
        """Remove the permit rule for exactly ``ip_address``."""

    @abstractmethod
    def set_public_network_access(self, value: Optional[str]) -> None:
        """Set the public network access switch."""

    def _call(self, operation: Callable[[], Any], description: str) -> Any:
        try:
            return retry_with_backoff(
                operation,
                f"{description} on {self.display_name}",
                max_retries=self.max_retries,
            )
        except ResourceNotFoundError as e:
            raise MissingResourceError(
                f"{self.display_name} not found in resource group "
                f"'{self.resource_group}'",
                missing=[self.display_name],
                cause=e,
            ) from e
        except HttpResponseError as e:
            raise NetworkRuleError(
                f"Failed to {description} on {self.display_name}: {e.message}",
                resource_id=self.resource_id,
                cause=e,
            ) from e


class KeyVaultNetworkTarget(NetworkRuleTarget):
    """Key Vault firewall via the Key Vault management plane."""

    resource_type = "key vault"

    @property
    def resource_id(self) -> str:
        return (
            f"/subscriptions/{self.session.subscription_id}/resourceGroups/"
            f"{self.resource_group}/providers/Microsoft.KeyVault/vaults/{self.name}"
        )

    def _get_vault(self) -> Any:
        return self._call(
            lambda: self.session.keyvault_management.vaults.get(
                self.resource_group, self.name
            ),
            "read vault",
        )

    def fetch_state(self) -> NetworkAccessState:
        properties = self._get_vault().properties
        acls = properties.network_acls
        return NetworkAccessState(
            default_action=_enum_value(acls.default_action) if acls else DEFAULT_ACTION_ALLOW,
            ip_rules=[rule.value for rule in (acls.ip_rules or [])] if acls else [],
            public_network_access=_enum_value(
                getattr(properties, "public_network_access", None)
            ),
        )

    def _update_ip_rules(
        self, mutate: Callable[[List[VaultIPRule]], List[VaultIPRule]], description: str
    ) -> None:
        acls = self._get_vault().properties.network_acls
        rule_set = VaultNetworkRuleSet(
            bypass=acls.bypass if acls else None,
            default_action=acls.default_action if acls else DEFAULT_ACTION_ALLOW,
            ip_rules=mutate(list(acls.ip_rules or []) if acls else []),
            virtual_network_rules=acls.virtual_network_rules if acls else None,
        )
        self._call(
            lambda: self.session.keyvault_management.vaults.update(
                self.resource_group,
                self.name,
                VaultPatchParameters(properties=VaultPatchProperties(network_acls=rule_set)),
            ),
            description,
        )

    def add_ip_rule(self, ip_address: str) -> None:
        logger.info(f"Adding firewall rule for {ip_address} to {self.display_name}")
        self._update_ip_rules(
            lambda rules: rules + [VaultIPRule(value=ip_address)], "add IP rule"
        )

    def remove_ip_rule(self, ip_address: str) -> None:
        logger.info(f"Removing firewall rule for {ip_address} from {self.display_name}")
        self._update_ip_rules(
            lambda rules: [r for r in rules if not _same_address(r.value, ip_address)],
            "remove IP rule",
        )

    def set_public_network_access(self, value: Optional[str]) -> None:
        logger.info(f"Setting public network access of {self.display_name} to {value}")
        self._call(
            lambda: self.session.keyvault_management.vaults.update(
                self.resource_group,
                self.name,
                VaultPatchParameters(
                    properties=VaultPatchProperties(public_network_access=value)
                ),
            ),
            "set public network access",
        )


class StorageAccountNetworkTarget(NetworkRuleTarget):
    """Storage account firewall via the storage management plane."""

    resource_type = "storage account"

    @property
    def resource_id(self) -> str:
        return (
            f"/subscriptions/{self.session.subscription_id}/resourceGroups/"
            f"{self.resource_group}/providers/Microsoft.Storage/storageAccounts/{self.name}"
        )

    def _get_account(self) -> Any:
        return self._call(
            lambda: self.session.storage_management.storage_accounts.get_properties(
                self.resource_group, self.name
            ),
            "read storage account",
        )

    def fetch_state(self) -> NetworkAccessState:
        account = self._get_account()
        rule_set = account.network_rule_set
        return NetworkAccessState(
            default_action=_enum_value(rule_set.default_action)
            if rule_set
            else DEFAULT_ACTION_ALLOW,
            ip_rules=[r.ip_address_or_range for r in (rule_set.ip_rules or [])]
            if rule_set
            else [],
            public_network_access=_enum_value(
                getattr(account, "public_network_access", None)
            ),
        )

    def _update_ip_rules(
        self,
        mutate: Callable[[List[StorageIPRule]], List[StorageIPRule]],
        description: str,
    ) -> None:
        current = self._get_account().network_rule_set
        rule_set = StorageNetworkRuleSet(
            bypass=current.bypass if current else None,
            default_action=current.default_action if current else DEFAULT_ACTION_ALLOW,
            ip_rules=mutate(list(current.ip_rules or []) if current else []),
            virtual_network_rules=current.virtual_network_rules if current else None,
            resource_access_rules=getattr(current, "resource_access_rules", None)
            if current
            else None,
        )
        self._call(
            lambda: self.session.storage_management.storage_accounts.update(
                self.resource_group,
                self.name,
                StorageAccountUpdateParameters(network_rule_set=rule_set),
            ),
            description,
        )

    def add_ip_rule(self, ip_address: str) -> None:
        logger.info(f"Adding firewall rule for {ip_address} to {self.display_name}")
        self._update_ip_rules(
            lambda rules: rules
            + [StorageIPRule(ip_address_or_range=ip_address, action="Allow")],
            "add IP rule",
        )

    def remove_ip_rule(self, ip_address: str) -> None:
        logger.info(f"Removing firewall rule for {ip_address} from {self.display_name}")
        self._update_ip_rules(
            lambda rules: [
                r for r in rules if not _same_address(r.ip_address_or_range, ip_address)
            ],
            "remove IP rule",
        )

    def set_public_network_access(self, value: Optional[str]) -> None:
        logger.info(f"Setting public network access of {self.display_name} to {value}")
        self._call(
            lambda: self.session.storage_management.storage_accounts.update(
                self.resource_group,
                self.name,
                StorageAccountUpdateParameters(public_network_access=value),
            ),
            "set public network access",
        )


def _same_address(rule: Optional[str], ip_address: str) -> bool:
    # Key Vault reports single addresses back as "a.b.c.d/32"
    if not rule:
        return False
    try:
        network = ipaddress.ip_network(rule.strip(), strict=False)
    except ValueError:
        return False
    return network.num_addresses == 1 and network.network_address == ipaddress.ip_address(
        ip_address
    )


def _restore(target: NetworkRuleTarget, grant: NetworkAccessGrant) -> None:
    if grant.rule_added:
        try:
            target.remove_ip_rule(grant.ip_address)
            grant.rule_added = False
        except Exception as e:
            message = (
                f"Failed to remove firewall rule for {grant.ip_address} from "
                f"{target.display_name}: {e}"
            )
            logger.error(message)
            grant.cleanup_errors.append(message)

    if grant.public_access_changed:
        prior = grant.prior_state.public_network_access
        try:
            target.set_public_network_access(prior)
            grant.public_access_changed = False
        except Exception as e:
            message = (
                f"Failed to restore public network access of {target.display_name} "
                f"to {prior}: {e}"
            )
            logger.error(message)
            grant.cleanup_errors.append(message)

    if grant.cleanup_errors:
        logger.error(
            f"{target.display_name} was NOT fully restored; manual cleanup required "
            f"for {grant.resource_id}"
        )


@contextmanager
def network_scoped_access(
    target: NetworkRuleTarget,
    ip_address: str,
    settle_seconds: float = 0,
    manage_public_access: bool = True,
    sleep: Callable[[float], None] = time.sleep,
) -> Iterator[NetworkAccessGrant]:
    """
    Permit ``ip_address`` on ``target`` for the duration of the block.

    Args:
        target: Resource whose firewall is adjusted
        ip_address: Caller IP to permit
        settle_seconds: Seconds to wait after a change for it to propagate
        manage_public_access: Whether a Disabled public network access switch
            may be enabled temporarily
        sleep: Sleep function (injected by tests)

    Yields:
        NetworkAccessGrant describing what was changed

    Raises:
        MissingResourceError: If the resource does not exist (before any mutation)
        NetworkRuleError: If the firewall cannot be opened
    """
    state = target.fetch_state()
    grant = NetworkAccessGrant(
        resource_id=target.resource_id, ip_address=ip_address, prior_state=state
    )

    try:
        if state.public_access_disabled:
            if manage_public_access:
                target.set_public_network_access(PUBLIC_ACCESS_ENABLED)
                grant.public_access_changed = True
            else:
                logger.warning(
                    f"Public network access is disabled on {target.display_name}; "
                    "data-plane calls will likely be rejected"
                )

        if not state.default_allows and not ip_in_rules(ip_address, state.ip_rules):
            target.add_ip_rule(ip_address)
            grant.rule_added = True

        if grant.mutated:
            if settle_seconds:
                logger.info(
                    f"Waiting {settle_seconds}s for firewall changes on "
                    f"{target.display_name} to propagate"
                )
                sleep(settle_seconds)
        else:
            logger.info(f"{ip_address} is already permitted on {target.display_name}")

        yield grant
    except Exception as e:
        logger.error(f"Network-scoped operation on {target.display_name} failed: {e}")
        raise
    finally:
        _restore(target, grant)


@contextmanager
def network_scoped_access_all(
    targets: Sequence[NetworkRuleTarget],
    ip_address: str,
    settle_seconds: float = 0,
    manage_public_access: bool = True,
    sleep: Callable[[float], None] = time.sleep,
) -> Iterator[List[NetworkAccessGrant]]:
    """Open several resources at once; all are restored in reverse order.

    Targets sharing a resource ID are opened once. The settle wait happens
    once, after every target has been opened.
    """
    unique: List[NetworkRuleTarget] = []
    seen = set()
    for target in targets:
        key = target.resource_id.lower()
        if key not in seen:
            seen.add(key)
            unique.append(target)

    with ExitStack() as stack:
        grants = [
            stack.enter_context(
                network_scoped_access(
                    target,
                    ip_address,
                    settle_seconds=0,
                    manage_public_access=manage_public_access,
                    sleep=sleep,
                )
            )
            for target in unique
        ]
        if settle_seconds and any(grant.mutated for grant in grants):
            logger.info(f"Waiting {settle_seconds}s for firewall changes to propagate")
            sleep(settle_seconds)
        yield grants
