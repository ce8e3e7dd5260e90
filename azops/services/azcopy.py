"""AzCopy invocation for server-side blob transfers."""

import logging
import os
import subprocess
from typing import Dict, List, Optional

from ..config_manager import AzCopyConfig
from ..exceptions import AzCopyError
from ..timeout_config import Timeouts, log_timeout_event

logger = logging.getLogger(__name__)

BLOB_ENDPOINT_TEMPLATE = "https://{account}.blob.core.windows.net/"


def blob_account_url(account_name: str) -> str:
    return BLOB_ENDPOINT_TEMPLATE.format(account=account_name)


class AzCopyRunner:
    """Runs AzCopy with the configured login type.

    AzCopy authenticates itself through ``AZCOPY_AUTO_LOGIN_TYPE`` (the Azure
    CLI login by default, the managed identity in unattended runs), so no SAS
    tokens are generated or passed on the command line.
    """

    def __init__(
        self, config: Optional[AzCopyConfig] = None, timeout: Optional[int] = None
    ) -> None:
        self.config = config or AzCopyConfig()
        self.timeout = timeout or Timeouts.AZCOPY

    def _environment(self) -> Dict[str, str]:
        env = dict(os.environ)
        env["AZCOPY_AUTO_LOGIN_TYPE"] = self.config.auto_login_type
        return env

    def run(self, args: List[str]) -> str:
        """
        Run ``azcopy <args>``.

        Returns:
            AzCopy's standard output

        Raises:
            AzCopyError: If AzCopy is missing, times out or exits non-zero
        """
        command = [self.config.path, *args]
        logger.info(f"Running azcopy {' '.join(args)}")
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=self._environment(),
            )
        except FileNotFoundError as e:
            raise AzCopyError(
                f"AzCopy executable not found: {self.config.path}",
                cause=e,
                recovery_suggestion="Install AzCopy v10 or set AZCOPY_PATH",
            ) from e
        except subprocess.TimeoutExpired as e:
            log_timeout_event("azcopy", self.timeout, command, level="error")
            raise AzCopyError(
                f"AzCopy did not finish within {self.timeout}s", cause=e
            ) from e

        if result.returncode != 0:
            tail = "\n".join((result.stdout or "").strip().splitlines()[-10:])
            logger.error(f"AzCopy output (last lines):\n{tail}")
            raise AzCopyError(
                f"AzCopy exited with code {result.returncode}: "
                f"{(result.stderr or '').strip() or 'see AzCopy log'}",
                returncode=result.returncode,
            )

        logger.debug(result.stdout)
        return result.stdout

    def copy_container(self, source_url: str, destination_url: str) -> str:
        """Copy every blob of one container into another, keeping newer targets."""
        return self.run(
            [
                "copy",
                f"{source_url.rstrip('/')}/*",
                destination_url,
                "--overwrite=ifSourceNewer",
                "--recursive=true",
            ]
        )

    def copy_account(self, source_account: str, destination_account: str) -> str:
        """Copy every container of one storage account into another."""
        return self.run(
            [
                "copy",
                blob_account_url(source_account),
                blob_account_url(destination_account),
                "--recursive=true",
            ]
        )
