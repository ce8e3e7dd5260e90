"""Base command infrastructure and shared utilities.

This module provides common utilities used across command modules:
- CommandContext for shared configuration and subscription sessions
- Error reporting at the click boundary
- Result reporting (human summary plus optional structured JSON line)
"""

import logging
import sys
from typing import Any, Dict, NoReturn, Optional

import click
from azure.core.exceptions import AzureError as AzureSDKError

from ..config_manager import AzureOpsConfig, create_config_from_env, setup_logging
from ..credential_provider import SessionProvider
from ..exceptions import AzureOpsError, wrap_azure_exception
from ..logging_config import configure_result_logging, emit_result

logger = logging.getLogger(__name__)

# Errors every command reports as a failed run instead of a traceback.
# AzureSDKError covers HttpResponseError, ServiceRequestError and
# ClientAuthenticationError from azure-core.
COMMAND_ERRORS = (AzureOpsError, AzureSDKError)


class CommandContext:
    """Shared context for command execution."""

    def __init__(
        self,
        ctx: click.Context,
        debug: bool = False,
        log_level: str = "INFO",
        use_managed_identity: Optional[bool] = None,
    ):
        self.click_ctx = ctx
        self.debug = debug
        self.log_level = "DEBUG" if debug else log_level
        self.use_managed_identity = use_managed_identity
        self._config: Optional[AzureOpsConfig] = None

    def get_config(self) -> AzureOpsConfig:
        """Load, validate and apply configuration once per invocation."""
        if self._config is None:
            try:
                config = create_config_from_env(
                    log_level=self.log_level,
                    use_managed_identity=self.use_managed_identity,
                )
            except ValueError as e:
                exit_with_error(f"Invalid configuration: {e}")
            setup_logging(config.logging)
            if self.debug:
                config.log_configuration_summary()
            self._config = config
        return self._config

    def require_subscription(self, provided: Optional[str] = None) -> str:
        """Get subscription ID from argument or AZURE_SUBSCRIPTION_ID."""
        subscription_id = provided or self.get_config().auth.subscription_id
        if not subscription_id:
            exit_with_error(
                "No subscription provided and AZURE_SUBSCRIPTION_ID not set in environment."
            )
        return subscription_id

    def session_provider(
        self, subscription_id: str, target_subscription_id: Optional[str] = None
    ) -> SessionProvider:
        return SessionProvider(
            subscription_id,
            target_subscription_id,
            auth=self.get_config().auth,
        )


def command_context(ctx: click.Context) -> CommandContext:
    """Create CommandContext from click context."""
    obj = ctx.obj or {}
    return CommandContext(
        ctx=ctx,
        debug=obj.get("debug", False),
        log_level=obj.get("log_level", "INFO"),
        use_managed_identity=obj.get("use_managed_identity"),
    )


def exit_with_error(message: str, code: int = 1) -> NoReturn:
    """Exit with error message."""
    click.echo(f"Error: {message}", err=True)
    sys.exit(code)


def exit_for_exception(error: Exception) -> NoReturn:
    """Report a command error with its recovery suggestion and exit 1."""
    if not isinstance(error, AzureOpsError):
        error = wrap_azure_exception(error)
    logger.debug(f"Command failed: {error.to_dict()}")
    message = error.message
    missing = getattr(error, "missing", None) or getattr(error, "validation_errors", None)
    if missing:
        message += "".join(f"\n  - {item}" for item in missing)
    if error.recovery_suggestion:
        message += f"\nSuggestion: {error.recovery_suggestion}"
    exit_with_error(message)


def finish(
    event: str, payload: Dict[str, Any], failed: bool = False, as_json: bool = False
) -> None:
    """Emit the structured result if requested and exit 1 on failure."""
    if as_json:
        configure_result_logging()
        emit_result(event, payload, failed=failed)
    if failed:
        sys.exit(1)
