"""
Timeouts for everything azops waits on outside the process.

Subprocesses (AzCopy, az), HTTP calls (public IP lookup, Microsoft Graph) and
provider-side polling loops all take their upper bound from ``Timeouts`` so a
hung dependency fails the run instead of stalling it.

Each value can be overridden with an environment variable, in whole seconds:

    AZOPS_TIMEOUT_QUICK            version checks (30)
    AZOPS_TIMEOUT_PUBLIC_IP        public IP lookup (10)
    AZOPS_TIMEOUT_STANDARD         az queries and Graph requests (60)
    AZOPS_TIMEOUT_CONTAINER_POLL   container delete/create polling (600)
    AZOPS_TIMEOUT_AZCOPY           one AzCopy transfer (14400)
"""

import logging
import os
from typing import Final

logger = logging.getLogger(__name__)


def _get_timeout(env_var: str, default: int) -> int:
    """Positive integer from ``env_var``, else ``default`` (with a warning if set but unusable)."""
    raw = os.environ.get(env_var)
    if raw is None:
        return default
    try:
        timeout = int(raw)
    except ValueError:
        timeout = 0
    if timeout > 0:
        return timeout
    logger.warning(
        f"Ignoring {env_var}={raw!r}: expected a positive number of seconds, "
        f"using {default}s"
    )
    return default


class Timeouts:
    """Timeout constants in seconds, resolved once at import."""

    QUICK: Final[int] = _get_timeout("AZOPS_TIMEOUT_QUICK", 30)
    VERSION_CHECK: Final[int] = QUICK
    PUBLIC_IP_LOOKUP: Final[int] = _get_timeout("AZOPS_TIMEOUT_PUBLIC_IP", 10)

    STANDARD: Final[int] = _get_timeout("AZOPS_TIMEOUT_STANDARD", 60)
    AZ_CLI_QUERY: Final[int] = STANDARD
    GRAPH_REQUEST: Final[int] = STANDARD

    # Upper bound for a container to disappear or appear after delete/create
    CONTAINER_POLL: Final[int] = _get_timeout("AZOPS_TIMEOUT_CONTAINER_POLL", 600)

    # 4 hours
    AZCOPY: Final[int] = _get_timeout("AZOPS_TIMEOUT_AZCOPY", 14400)


def log_timeout_event(
    operation: str,
    timeout_value: float,
    command: str | list[str] | None = None,
    level: str = "warning",
) -> None:
    """Log that ``operation`` exceeded ``timeout_value`` seconds, with a shortened command."""
    message = f"Operation '{operation}' timed out after {timeout_value} seconds"
    if command:
        text = command if isinstance(command, str) else " ".join(command)
        if len(text) > 100:
            text = text[:97] + "..."
        message += f" - command: '{text}'"
    getattr(logger, level, logger.warning)(message)
