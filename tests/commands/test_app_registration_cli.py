"""CLI tests for the app-registration command."""

from unittest.mock import patch

import pytest

from azops.cli import cli
from azops.exceptions import AzureCliError
from azops.services.app_registration import AppRegistrationResult

TENANT = "72f988bf-86f1-41af-91ab-2d7cd011db47"
APP_ID = "12345678-1234-1234-1234-123456789012"


@pytest.fixture
def az_available():
    with patch("azops.commands.app_registration.is_az_cli_available", return_value=True):
        yield


def _result(**overrides):
    values = dict(
        tenant_id=TENANT,
        app_id=APP_ID,
        object_id="obj-1",
        display_name="ops-sync",
        created=True,
        service_principal_created=True,
        client_secret="generated-secret",
    )
    values.update(overrides)
    return AppRegistrationResult(**values)


class TestAppRegistrationCommand:
    @patch("azops.commands.app_registration.AppRegistrationService")
    def test_prints_environment_block(self, mock_service_cls, cli_runner, az_available):
        mock_service_cls.return_value.register.return_value = _result()

        result = cli_runner.invoke(cli, ["app-registration", "--name", "ops-sync"], obj={})

        assert result.exit_code == 0, result.output
        assert f"AZURE_TENANT_ID={TENANT}" in result.output
        assert f"AZURE_CLIENT_ID={APP_ID}" in result.output
        assert "AZURE_CLIENT_SECRET=generated-secret" in result.output

    @patch("azops.commands.app_registration.AppRegistrationService")
    def test_secret_stored_in_vault_is_not_printed(
        self, mock_service_cls, cli_runner, az_available, mock_provider, subscription_env
    ):
        mock_service_cls.return_value.register.return_value = _result(
            stored_in_vault="kv-prod"
        )

        result = cli_runner.invoke(
            cli,
            [
                "app-registration",
                "--name", "ops-sync",
                "--vault-name", "kv-prod",
                "--secret-name", "ops-sync-secret",
            ],
            obj={},
        )

        assert result.exit_code == 0, result.output
        assert "generated-secret" not in result.output
        assert "stored as 'ops-sync-secret' in kv-prod" in result.output
        kwargs = mock_service_cls.return_value.register.call_args.kwargs
        assert kwargs["vault_session"] is mock_provider.get_session.return_value

    def test_injection_in_name_is_rejected(self, cli_runner, az_available):
        result = cli_runner.invoke(
            cli, ["app-registration", "--name", "app; rm -rf /"], obj={}
        )

        assert result.exit_code == 1
        assert "Input validation error" in result.output

    def test_secret_years_out_of_range(self, cli_runner, az_available):
        result = cli_runner.invoke(
            cli, ["app-registration", "--name", "ops-sync", "--secret-years", "5"], obj={}
        )
        assert result.exit_code == 2

    def test_requires_az_cli(self, cli_runner):
        with patch(
            "azops.commands.app_registration.is_az_cli_available", return_value=False
        ):
            result = cli_runner.invoke(cli, ["app-registration", "--name", "ops-sync"], obj={})

        assert result.exit_code == 1
        assert "Azure CLI ('az') is required" in result.output

    @patch("azops.commands.app_registration.AppRegistrationService")
    def test_cli_failure(self, mock_service_cls, cli_runner, az_available):
        mock_service_cls.return_value.register.side_effect = AzureCliError(
            "Azure CLI call failed: Insufficient privileges"
        )

        result = cli_runner.invoke(cli, ["app-registration", "--name", "ops-sync"], obj={})

        assert result.exit_code == 1
        assert "Insufficient privileges" in result.output

    @patch("azops.commands.app_registration.AppRegistrationService")
    def test_failed_vault_write_prints_secret_and_fails(
        self, mock_service_cls, cli_runner, az_available, mock_provider, subscription_env
    ):
        mock_service_cls.return_value.register.return_value = _result(
            vault_error="Azure authentication failed: Forbidden"
        )

        result = cli_runner.invoke(
            cli,
            [
                "app-registration",
                "--name", "ops-sync",
                "--vault-name", "kv-prod",
                "--secret-name", "ops-sync-secret",
            ],
            obj={},
        )

        assert result.exit_code == 1
        assert "could not store the client secret in kv-prod" in result.output
        assert "AZURE_CLIENT_SECRET=generated-secret" in result.output

    @patch("azops.commands.app_registration.AppRegistrationService")
    def test_forbidden_response_is_reported(
        self, mock_service_cls, cli_runner, az_available, http_error
    ):
        mock_service_cls.return_value.register.side_effect = http_error(
            403, "AuthorizationFailed"
        )

        result = cli_runner.invoke(cli, ["app-registration", "--name", "ops-sync"], obj={})

        assert result.exit_code == 1
        assert "Error: Azure authentication failed" in result.output
        assert "AuthorizationFailed" in result.output
