"""Helpers for Azure Resource Manager resource IDs and names."""

import re
from typing import Optional

RE_GUID = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)

# /subscriptions/<sub>/resourceGroups/<rg>/...
RE_RESOURCE_GROUP_IN_ID = re.compile(r"/resourceGroups/([^/]+)", re.IGNORECASE)

# https://learn.microsoft.com/azure/azure-resource-manager/management/resource-name-rules
RE_STORAGE_ACCOUNT_NAME = re.compile(r"^[a-z0-9]{3,24}$")
RE_CONTAINER_NAME = re.compile(r"^(?!.*--)[a-z0-9][a-z0-9-]{1,61}[a-z0-9]$")
RE_KEY_VAULT_NAME = re.compile(r"^[a-zA-Z][a-zA-Z0-9-]{1,22}[a-zA-Z0-9]$")


def is_guid(value: str) -> bool:
    return bool(value) and bool(RE_GUID.match(value))


def parse_resource_group(resource_id: str) -> Optional[str]:
    """Return the resource group segment of an ARM ID, if any."""
    match = RE_RESOURCE_GROUP_IN_ID.search(resource_id or "")
    return match.group(1) if match else None


def last_segment(resource_id: str) -> str:
    """Return the trailing name segment of an ARM ID (e.g. a role definition GUID)."""
    return (resource_id or "").rstrip("/").rsplit("/", 1)[-1]


def subscription_scope(subscription_id: str) -> str:
    return f"/subscriptions/{subscription_id}"


def role_definition_resource_id(subscription_id: str, role_definition_id: str) -> str:
    """Build the full role definition ID the authorization API expects."""
    if role_definition_id.startswith("/"):
        return role_definition_id
    return (
        f"/subscriptions/{subscription_id}/providers/"
        f"Microsoft.Authorization/roleDefinitions/{role_definition_id}"
    )


def is_within_subscription(scope: str, subscription_id: str) -> bool:
    """True when ``scope`` is the subscription itself or anything below it."""
    prefix = subscription_scope(subscription_id).lower()
    lowered = (scope or "").lower()
    return lowered == prefix or lowered.startswith(prefix + "/")
