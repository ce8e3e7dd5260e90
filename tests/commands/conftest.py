from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

SUBSCRIPTION = "11111111-1111-1111-1111-111111111111"


@pytest.fixture
def cli_runner():
    """Provide Click CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def _no_logging_setup():
    """Keep commands from replacing the root logging handlers during tests."""
    with patch("azops.commands.base.setup_logging"):
        yield


@pytest.fixture
def subscription_env(monkeypatch):
    monkeypatch.setenv("AZURE_SUBSCRIPTION_ID", SUBSCRIPTION)
    return SUBSCRIPTION


@pytest.fixture
def mock_provider():
    """Patch SessionProvider so commands never build real credentials."""
    with patch("azops.commands.base.SessionProvider") as provider_cls:
        provider = MagicMock()
        provider.is_cross_subscription.return_value = False
        provider_cls.return_value = provider
        provider.cls = provider_cls
        yield provider
