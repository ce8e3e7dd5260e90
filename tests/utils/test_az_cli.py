"""Tests for the Azure CLI wrapper."""

import subprocess
from unittest.mock import Mock, patch

import pytest

from azops.exceptions import AzureCliError
from azops.utils.az_cli import is_az_cli_available, run_az


class TestIsAzCliAvailable:
    @patch("azops.utils.az_cli.subprocess.run")
    def test_available(self, mock_run):
        mock_run.return_value = Mock(returncode=0)
        assert is_az_cli_available() is True

    @patch("azops.utils.az_cli.subprocess.run")
    def test_not_installed(self, mock_run):
        mock_run.side_effect = FileNotFoundError("az")
        assert is_az_cli_available() is False


class TestRunAz:
    @patch("azops.utils.az_cli.subprocess.run")
    def test_parses_json(self, mock_run):
        mock_run.return_value = Mock(returncode=0, stdout='{"appId": "abc"}', stderr="")

        assert run_az(["ad", "app", "show", "--id", "abc"]) == {"appId": "abc"}
        assert mock_run.call_args.args[0] == [
            "az", "ad", "app", "show", "--id", "abc", "-o", "json"
        ]

    @patch("azops.utils.az_cli.subprocess.run")
    def test_empty_json_output_is_none(self, mock_run):
        mock_run.return_value = Mock(returncode=0, stdout="  \n", stderr="")
        assert run_az(["ad", "sp", "list"]) is None

    @patch("azops.utils.az_cli.subprocess.run")
    def test_tsv_output(self, mock_run):
        mock_run.return_value = Mock(returncode=0, stdout="tenant-id\n", stderr="")

        assert run_az(["account", "show", "--query", "tenantId"], parse_json=False) == "tenant-id"
        assert mock_run.call_args.args[0][-2:] == ["-o", "tsv"]

    @patch("azops.utils.az_cli.subprocess.run")
    def test_failure_raises(self, mock_run):
        mock_run.return_value = Mock(returncode=1, stdout="", stderr="ERROR: Insufficient privileges\n")

        with pytest.raises(AzureCliError, match="Insufficient privileges"):
            run_az(["ad", "app", "create"])

    @patch("azops.utils.az_cli.subprocess.run")
    def test_timeout_raises(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired("az", 1)

        with pytest.raises(AzureCliError, match="timed out"):
            run_az(["ad", "app", "list"], timeout=1)
