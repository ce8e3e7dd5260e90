"""Tests for the AzCopy runner."""

import subprocess
from unittest.mock import Mock, patch

import pytest

from azops.config_manager import AzCopyConfig
from azops.exceptions import AzCopyError
from azops.services.azcopy import AzCopyRunner, blob_account_url


def _completed(returncode=0, stdout="Final Job Status: Completed", stderr=""):
    return Mock(returncode=returncode, stdout=stdout, stderr=stderr)


class TestUrls:
    def test_account_url(self):
        assert blob_account_url("stsource") == "https://stsource.blob.core.windows.net/"


class TestAzCopyRunner:
    @patch("azops.services.azcopy.subprocess.run")
    def test_copy_container_arguments(self, mock_run):
        mock_run.return_value = _completed()
        runner = AzCopyRunner(AzCopyConfig(path="/opt/azcopy", auto_login_type="MSI"))

        runner.copy_container(
            "https://a.blob.core.windows.net/data/",
            "https://b.blob.core.windows.net/data",
        )

        command = mock_run.call_args.args[0]
        assert command == [
            "/opt/azcopy",
            "copy",
            "https://a.blob.core.windows.net/data/*",
            "https://b.blob.core.windows.net/data",
            "--overwrite=ifSourceNewer",
            "--recursive=true",
        ]
        assert mock_run.call_args.kwargs["env"]["AZCOPY_AUTO_LOGIN_TYPE"] == "MSI"
        assert "shell" not in mock_run.call_args.kwargs

    @patch("azops.services.azcopy.subprocess.run")
    def test_copy_account_arguments(self, mock_run):
        mock_run.return_value = _completed()

        AzCopyRunner(AzCopyConfig()).copy_account("stsource", "stdest")

        assert mock_run.call_args.args[0] == [
            "azcopy",
            "copy",
            "https://stsource.blob.core.windows.net/",
            "https://stdest.blob.core.windows.net/",
            "--recursive=true",
        ]

    @patch("azops.services.azcopy.subprocess.run")
    def test_non_zero_exit(self, mock_run):
        mock_run.return_value = _completed(returncode=1, stderr="AuthorizationFailure")

        with pytest.raises(AzCopyError, match="AuthorizationFailure") as exc_info:
            AzCopyRunner().run(["copy", "a", "b"])

        assert exc_info.value.context["returncode"] == 1

    @patch("azops.services.azcopy.subprocess.run")
    def test_missing_executable(self, mock_run):
        mock_run.side_effect = FileNotFoundError("azcopy")

        with pytest.raises(AzCopyError, match="not found"):
            AzCopyRunner().run(["--version"])

    @patch("azops.services.azcopy.subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired("azcopy", 5)

        with pytest.raises(AzCopyError, match="did not finish within 5s"):
            AzCopyRunner(timeout=5).run(["copy", "a", "b"])
