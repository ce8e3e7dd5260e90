from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import pytest
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

# ============================================================================
# Key Vault Test Fixtures
# ============================================================================


class FakeSecretClient:
    """In-memory stand-in for azure.keyvault.secrets.SecretClient."""

    def __init__(self, vault_name: str = "vault") -> None:
        self.vault_name = vault_name
        self._secrets: Dict[str, SimpleNamespace] = {}
        self._order: List[str] = []
        self.set_calls: List[Dict[str, Any]] = []
        self.fail_on_get: Dict[str, Exception] = {}

    def add(
        self,
        name: str,
        value: str,
        enabled: bool = True,
        managed: bool = False,
        expires_on: Optional[datetime] = None,
        content_type: Optional[str] = None,
        tags: Optional[Dict[str, str]] = None,
        not_before: Optional[datetime] = None,
    ) -> None:
        if name not in self._secrets:
            self._order.append(name)
        self._secrets[name] = SimpleNamespace(
            name=name,
            value=value,
            properties=SimpleNamespace(
                name=name,
                enabled=enabled,
                managed=managed,
                expires_on=expires_on,
                content_type=content_type,
                tags=tags,
                not_before=not_before,
            ),
        )

    def value_of(self, name: str) -> Optional[str]:
        secret = self._secrets.get(name)
        return secret.value if secret else None

    def properties_of(self, name: str) -> SimpleNamespace:
        return self._secrets[name].properties

    def list_properties_of_secrets(self):
        return iter([self._secrets[name].properties for name in self._order])

    def get_secret(self, name: str):
        if name in self.fail_on_get:
            raise self.fail_on_get[name]
        if name not in self._secrets:
            raise ResourceNotFoundError(f"Secret not found: {name}")
        return self._secrets[name]

    def set_secret(self, name: str, value: str, **kwargs: Any):
        self.set_calls.append({"name": name, "value": value, **kwargs})
        self.add(
            name,
            value,
            enabled=kwargs.get("enabled", True),
            expires_on=kwargs.get("expires_on"),
            content_type=kwargs.get("content_type"),
            tags=kwargs.get("tags"),
            not_before=kwargs.get("not_before"),
        )
        return self._secrets[name]


@pytest.fixture
def source_secrets():
    return FakeSecretClient("kv-source")


@pytest.fixture
def target_secrets():
    return FakeSecretClient("kv-target")


@pytest.fixture
def expiry():
    return datetime(2030, 1, 1, tzinfo=timezone.utc)


# ============================================================================
# Azure Session / SDK Test Fixtures
# ============================================================================


@pytest.fixture
def http_error():
    """Factory for HttpResponseError carrying a status code without a real response."""

    def _make(status_code: int, message: str = "error") -> HttpResponseError:
        error = HttpResponseError(message=message)
        error.status_code = status_code
        return error

    return _make


@pytest.fixture
def mock_session():
    """Provide a mock AzureSession bound to a test subscription."""
    session = Mock()
    session.subscription_id = "00000000-0000-0000-0000-000000000001"
    session.credential = Mock()
    return session


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays."""
    delays: List[float] = []

    def _sleep(seconds: float) -> None:
        delays.append(seconds)

    _sleep.delays = delays  # type: ignore[attr-defined]
    return _sleep


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    """Keep developer environment variables out of configuration tests."""
    for name in (
        "AZURE_SUBSCRIPTION_ID",
        "AZOPS_USE_MANAGED_IDENTITY",
        "AZOPS_MANAGED_IDENTITY_CLIENT_ID",
        "AZOPS_MAX_RETRIES",
        "AZOPS_RETRY_DELAY",
        "AZOPS_POLL_INTERVAL",
        "AZOPS_CONTAINER_COOLDOWN",
        "AZOPS_NETWORK_SETTLE_SECONDS",
        "AZOPS_MANAGE_PUBLIC_ACCESS",
        "AZOPS_PUBLIC_IP_URL",
        "AZOPS_RBAC_MANAGED_PREFIXES",
        "AZCOPY_PATH",
        "AZCOPY_AUTO_LOGIN_TYPE",
        "LOG_LEVEL",
        "LOG_FILE",
        "LOG_FORMAT",
    ):
        monkeypatch.delenv(name, raising=False)
