"""Microsoft Entra ID application registration through the Azure CLI.

The Azure CLI is used instead of a Graph SDK so the registration runs with the
operator's own directory permissions from 'az login'. All arguments are passed
as lists, never through a shell, and every user-supplied value is validated
before it reaches a subprocess.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from azure.core.exceptions import AzureError as AzureSDKError

from ..credential_provider import AzureSession, KeyVaultReference
from ..exceptions import AzureCliError, wrap_azure_exception
from ..utils.az_cli import run_az
from ..utils.resource_id import RE_KEY_VAULT_NAME, is_guid

logger = logging.getLogger(__name__)

SECRET_DISPLAY_NAME = "azops client secret"


def validate_app_name(name: str) -> str:
    """Validate and sanitize app registration name.

    Raises:
        ValueError: If name is empty or contains invalid characters
    """
    if not name or not name.strip():
        raise ValueError("App name cannot be empty")

    if not re.match(r"^[a-zA-Z0-9\s\-_.]+$", name):
        raise ValueError(
            f"Invalid app name format: {name}. "
            "Use only letters, numbers, spaces, dots, hyphens, underscores."
        )

    return name.strip()


def validate_redirect_uri(uri: str) -> str:
    """Validate and sanitize redirect URI.

    Raises:
        ValueError: If URI is empty or has invalid format
    """
    if not uri or not uri.strip():
        raise ValueError("Redirect URI cannot be empty")

    uri_stripped = uri.strip()
    if not re.match(r"^https?://\S+$", uri_stripped):
        raise ValueError(
            f"Invalid redirect URI format: {uri_stripped}. "
            "Must start with http:// or https://"
        )

    return uri_stripped


def validate_guid(value: str, label: str = "ID") -> str:
    """Validate a GUID such as a tenant or application ID.

    Raises:
        ValueError: If the value is empty or not a GUID
    """
    if not value or not value.strip():
        raise ValueError(f"{label} cannot be empty")
    if not is_guid(value.strip()):
        raise ValueError(
            f"Invalid {label} format: {value}. "
            "Must be a valid GUID (e.g., 12345678-1234-1234-1234-123456789012)"
        )
    return value.strip()


def validate_vault_name(name: str) -> str:
    if not name or not RE_KEY_VAULT_NAME.match(name.strip()):
        raise ValueError(
            f"Invalid Key Vault name: {name}. Use 3-24 letters, digits and hyphens, "
            "starting with a letter."
        )
    return name.strip()


def validate_secret_name(name: str) -> str:
    if not name or not re.match(r"^[0-9a-zA-Z-]{1,127}$", name.strip()):
        raise ValueError(
            f"Invalid secret name: {name}. Use 1-127 letters, digits and hyphens."
        )
    return name.strip()


@dataclass
class AppRegistrationRequest:
    name: str
    tenant_id: Optional[str] = None
    redirect_uri: Optional[str] = None
    create_secret: bool = True
    secret_years: int = 1
    vault_name: Optional[str] = None
    secret_name: Optional[str] = None

    def validate(self) -> "AppRegistrationRequest":
        """Return a validated copy; raises ValueError on the first invalid field."""
        if self.secret_years < 1 or self.secret_years > 2:
            raise ValueError("Secret lifetime must be 1 or 2 years")
        if bool(self.vault_name) != bool(self.secret_name):
            raise ValueError("--vault-name and --secret-name must be given together")
        if self.vault_name and not self.create_secret:
            raise ValueError("Storing a secret in Key Vault requires --create-secret")
        return AppRegistrationRequest(
            name=validate_app_name(self.name),
            tenant_id=validate_guid(self.tenant_id, "tenant ID")
            if self.tenant_id
            else None,
            redirect_uri=validate_redirect_uri(self.redirect_uri)
            if self.redirect_uri
            else None,
            create_secret=self.create_secret,
            secret_years=self.secret_years,
            vault_name=validate_vault_name(self.vault_name) if self.vault_name else None,
            secret_name=validate_secret_name(self.secret_name)
            if self.secret_name
            else None,
        )


@dataclass
class AppRegistrationResult:
    tenant_id: str
    app_id: str
    object_id: str
    display_name: str
    created: bool
    service_principal_created: bool = False
    client_secret: Optional[str] = None
    secret_expires_on: Optional[datetime] = None
    stored_in_vault: Optional[str] = None
    vault_error: Optional[str] = None

    @property
    def has_failures(self) -> bool:
        return self.vault_error is not None

    def to_dict(self) -> Dict[str, Any]:
        # The secret value itself is never serialised
        return {
            "tenant_id": self.tenant_id,
            "app_id": self.app_id,
            "object_id": self.object_id,
            "display_name": self.display_name,
            "created": self.created,
            "service_principal_created": self.service_principal_created,
            "secret_created": self.client_secret is not None,
            "secret_expires_on": self.secret_expires_on.isoformat()
            if self.secret_expires_on
            else None,
            "stored_in_vault": self.stored_in_vault,
            "vault_error": self.vault_error,
        }


class AppRegistrationService:
    """Creates (or reuses) an app registration and its service principal."""

    def __init__(self, az: Callable[..., Any] = run_az) -> None:
        self._az = az

    def current_tenant_id(self) -> str:
        tenant_id = self._az(
            ["account", "show", "--query", "tenantId"], parse_json=False
        )
        return validate_guid(tenant_id or "", "tenant ID")

    def find_existing(self, name: str) -> Optional[Dict[str, str]]:
        apps: List[Dict[str, str]] = (
            self._az(
                [
                    "ad",
                    "app",
                    "list",
                    "--display-name",
                    name,
                    "--query",
                    "[].{appId:appId, objectId:id, displayName:displayName}",
                ]
            )
            or []
        )
        # --display-name is a prefix filter
        matches = [app for app in apps if app.get("displayName") == name]
        if len(matches) > 1:
            logger.warning(
                f"{len(matches)} app registrations are named '{name}'; reusing the first"
            )
        return matches[0] if matches else None

    def _create_app(self, request: AppRegistrationRequest) -> Dict[str, str]:
        args = [
            "ad",
            "app",
            "create",
            "--display-name",
            request.name,
            "--sign-in-audience",
            "AzureADMyOrg",
        ]
        if request.redirect_uri:
            args += ["--web-redirect-uris", request.redirect_uri]
        args += ["--query", "{appId:appId, objectId:id}"]
        return self._az(args)

    def _ensure_service_principal(self, app_id: str) -> bool:
        """Create the service principal if missing; returns True if created."""
        try:
            self._az(["ad", "sp", "show", "--id", app_id, "--query", "id"])
            logger.info("Service principal already exists")
            return False
        except AzureCliError:
            logger.info("Creating service principal")
        self._az(["ad", "sp", "create", "--id", app_id, "--query", "id"])
        return True

    def _create_secret(self, app_id: str, years: int) -> str:
        return self._az(
            [
                "ad",
                "app",
                "credential",
                "reset",
                "--id",
                app_id,
                "--display-name",
                SECRET_DISPLAY_NAME,
                "--years",
                str(years),
                "--append",
                "--query",
                "password",
            ],
            parse_json=False,
        )

    def register(
        self,
        request: AppRegistrationRequest,
        vault_session: Optional[AzureSession] = None,
    ) -> AppRegistrationResult:
        """
        Create or reuse the app registration described by ``request``.

        Args:
            request: Validated registration request
            vault_session: Session used to store the secret when a vault is named

        Raises:
            AzureCliError: If an Azure CLI call fails
            MissingResourceError: If the named Key Vault does not exist
        """
        vault: Optional[KeyVaultReference] = None
        if request.vault_name and request.create_secret:
            if vault_session is None:
                raise ValueError("A subscription is required to store the secret")
            # Resolved before the secret exists so a missing vault loses nothing
            vault = vault_session.find_key_vault(request.vault_name)

        tenant_id = request.tenant_id or self.current_tenant_id()
        logger.info(f"Using tenant {tenant_id}")

        existing = self.find_existing(request.name)
        if existing:
            logger.info(
                f"Reusing existing app registration '{request.name}' ({existing['appId']})"
            )
            app, created = existing, False
        else:
            logger.info(f"Creating app registration '{request.name}'")
            app, created = self._create_app(request), True

        app_id = validate_guid(app["appId"], "application ID")
        result = AppRegistrationResult(
            tenant_id=tenant_id,
            app_id=app_id,
            object_id=app["objectId"],
            display_name=request.name,
            created=created,
        )
        result.service_principal_created = self._ensure_service_principal(app_id)

        if request.create_secret:
            result.client_secret = self._create_secret(app_id, request.secret_years)
            result.secret_expires_on = datetime.now(timezone.utc) + timedelta(
                days=365 * request.secret_years
            )
            logger.info("Client secret created")

        if vault is not None and result.client_secret:
            self._store_secret(vault_session, vault, request.secret_name, result)

        return result

    def _store_secret(
        self,
        vault_session: AzureSession,
        vault: KeyVaultReference,
        secret_name: str,
        result: AppRegistrationResult,
    ) -> None:
        """Write the new client secret to the vault.

        The credential already exists in Entra ID at this point, so a failed
        write is recorded on the result and the secret is kept for the caller.
        """
        try:
            vault_session.secret_client(vault.vault_uri).set_secret(
                secret_name,
                result.client_secret,
                content_type="application/x-client-secret",
                tags={"appId": result.app_id, "tenantId": result.tenant_id},
                expires_on=result.secret_expires_on,
            )
        except AzureSDKError as e:
            error = wrap_azure_exception(
                e, {"vault_name": vault.name, "secret_name": secret_name}
            )
            result.vault_error = error.message
            logger.error(
                f"Could not store the client secret in {vault.name}: {error.message}"
            )
            return
        result.stored_in_vault = vault.name
        logger.info(f"Client secret stored as '{secret_name}' in {vault.name}")
