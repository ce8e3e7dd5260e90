"""Thin wrapper around the Azure CLI for operations without a convenient SDK."""

import json
import logging
import subprocess
from typing import Any, List, Optional

from ..exceptions import AzureCliError
from ..timeout_config import Timeouts, log_timeout_event

logger = logging.getLogger(__name__)


def is_az_cli_available() -> bool:
    """Check whether the Azure CLI is installed and runnable."""
    try:
        result = subprocess.run(
            ["az", "--version"],
            capture_output=True,
            text=True,
            timeout=Timeouts.VERSION_CHECK,
        )
        return result.returncode == 0
    except (subprocess.SubprocessError, FileNotFoundError):
        return False


def run_az(
    args: List[str], timeout: Optional[int] = None, parse_json: bool = True
) -> Any:
    """Run ``az <args>`` and return its parsed output.

    Args:
        args: Arguments after ``az``; passed as a list so no shell is involved
        timeout: Seconds before the call is abandoned
        parse_json: Parse stdout as JSON (``-o json`` is appended); otherwise
            return stripped text (``-o tsv`` is appended)

    Returns:
        Parsed JSON (or None for empty output), or text

    Raises:
        AzureCliError: On non-zero exit, timeout, or a missing CLI
    """
    command = ["az", *args, "-o", "json" if parse_json else "tsv"]
    timeout = timeout or Timeouts.AZ_CLI_QUERY
    logger.debug(f"Running: {' '.join(command[:4])} ...")
    try:
        result = subprocess.run(
            command, capture_output=True, text=True, timeout=timeout
        )
    except subprocess.TimeoutExpired as e:
        log_timeout_event("az cli", timeout, command)
        raise AzureCliError(
            f"Azure CLI call timed out after {timeout}s", command=command, cause=e
        ) from e
    except FileNotFoundError as e:
        raise AzureCliError(
            "Azure CLI ('az') is not installed or not on PATH",
            command=command,
            cause=e,
            recovery_suggestion="Install the Azure CLI and run 'az login'",
        ) from e

    if result.returncode != 0:
        raise AzureCliError(
            f"Azure CLI call failed: {result.stderr.strip()}", command=command
        )

    output = result.stdout.strip()
    if not parse_json:
        return output
    return json.loads(output) if output else None
