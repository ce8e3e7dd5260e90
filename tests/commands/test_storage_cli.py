"""CLI tests for the copy-blobs and copy-storage-account commands."""

from unittest.mock import patch

from azops.cli import cli
from azops.exceptions import AzCopyError, MissingResourceError
from azops.services.blob_replication import BlobReplicationRequest, BlobReplicationResult

BLOB_ARGS = [
    "copy-blobs",
    "--source-resource-group", "rg-src",
    "--destination-resource-group", "rg-dst",
    "--source-storage", "stsource",
    "--destination-storage", "stdest",
    "--source-container", "data",
]


def _result(source=3, destination=3):
    request = BlobReplicationRequest("rg-src", "stsource", "data", "rg-dst", "stdest")
    return BlobReplicationResult(
        request=request,
        copy_performed=True,
        source_blob_count=source,
        destination_blob_count=destination,
    )


class TestCopyBlobsCommand:
    @patch("azops.commands.storage.BlobReplicationService")
    def test_success(self, mock_service_cls, cli_runner, mock_provider, subscription_env):
        mock_service_cls.return_value.replicate.return_value = _result()

        result = cli_runner.invoke(cli, BLOB_ARGS, obj={})

        assert result.exit_code == 0, result.output
        assert "Blobs: 3 in source, 3 in destination" in result.output
        mock_provider.verify_all.assert_called_once()
        request = mock_service_cls.return_value.replicate.call_args.args[0]
        assert request.destination_container == "data"

    @patch("azops.commands.storage.BlobReplicationService")
    def test_count_mismatch_is_informational(
        self, mock_service_cls, cli_runner, mock_provider, subscription_env
    ):
        mock_service_cls.return_value.replicate.return_value = _result(3, 2)

        result = cli_runner.invoke(cli, BLOB_ARGS, obj={})

        assert result.exit_code == 0
        assert "(counts differ)" in result.output

    @patch("azops.commands.storage.BlobReplicationService")
    def test_missing_preconditions_are_listed(
        self, mock_service_cls, cli_runner, mock_provider, subscription_env
    ):
        mock_service_cls.return_value.replicate.side_effect = MissingResourceError(
            "2 precondition(s) failed",
            missing=["source container 'data'", "destination storage account 'stdest'"],
        )

        result = cli_runner.invoke(cli, BLOB_ARGS, obj={})

        assert result.exit_code == 1
        assert "- source container 'data'" in result.output
        assert "- destination storage account 'stdest'" in result.output

    def test_invalid_account_name(self, cli_runner, mock_provider, subscription_env):
        args = list(BLOB_ARGS)
        args[args.index("stsource")] = "Bad_Name"

        result = cli_runner.invoke(cli, args, obj={})

        assert result.exit_code == 2
        assert "lowercase letters and digits" in result.output

    def test_same_source_and_destination(self, cli_runner, mock_provider, subscription_env):
        args = list(BLOB_ARGS)
        args[args.index("stdest")] = "stsource"

        result = cli_runner.invoke(cli, args, obj={})

        assert result.exit_code == 1
        assert "Source and destination container are the same" in result.output
        mock_provider.verify_all.assert_not_called()

    @patch("azops.commands.storage.BlobReplicationService")
    def test_cross_subscription(
        self, mock_service_cls, cli_runner, mock_provider, subscription_env
    ):
        mock_service_cls.return_value.replicate.return_value = _result()

        result = cli_runner.invoke(
            cli, BLOB_ARGS + ["--destination-subscription", "sub-b", "--network-scoped"], obj={}
        )

        assert result.exit_code == 0, result.output
        assert mock_provider.cls.call_args.args[:2] == (subscription_env, "sub-b")
        kwargs = mock_service_cls.return_value.replicate.call_args.kwargs
        assert kwargs["network_scoped"] is True

    def test_forbidden_container_delete_is_reported(
        self, cli_runner, mock_provider, subscription_env, http_error
    ):
        session = mock_provider.get_session.return_value
        session.storage_management.blob_containers.delete.side_effect = http_error(
            403, "AuthorizationFailed"
        )

        result = cli_runner.invoke(cli, BLOB_ARGS, obj={})

        assert result.exit_code == 1
        assert "Error: Azure authentication failed" in result.output
        assert "AuthorizationFailed" in result.output
        session.storage_management.blob_containers.create.assert_not_called()


class TestCopyStorageAccountCommand:
    @patch("azops.commands.storage.run_account_copy")
    def test_success(self, mock_copy, cli_runner):
        result = cli_runner.invoke(
            cli,
            ["copy-storage-account", "--source-storage", "stsource", "--destination-storage", "stdest"],
            obj={},
        )

        assert result.exit_code == 0, result.output
        assert mock_copy.call_args.args == ("stsource", "stdest")

    @patch("azops.commands.storage.run_account_copy")
    def test_azcopy_failure(self, mock_copy, cli_runner):
        mock_copy.side_effect = AzCopyError("AzCopy exited with code 1: denied", returncode=1)

        result = cli_runner.invoke(
            cli,
            ["copy-storage-account", "--source-storage", "stsource", "--destination-storage", "stdest"],
            obj={},
        )

        assert result.exit_code == 1
        assert "AzCopy exited with code 1" in result.output

    def test_same_account_is_rejected(self, cli_runner):
        result = cli_runner.invoke(
            cli,
            ["copy-storage-account", "--source-storage", "stsource", "--destination-storage", "stsource"],
            obj={},
        )

        assert result.exit_code == 1
