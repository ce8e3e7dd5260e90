"""
Configuration management for azops.

Every setting is read from the environment (a local ``.env`` file is loaded
first) into one dataclass per concern, validated on construction.
``create_config_from_env`` is what commands call; CLI flags are applied as
overrides on top of the environment before validation.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import colorlog
from dotenv import load_dotenv

from .timeout_config import Timeouts

load_dotenv(override=True)

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# SDK and HTTP client loggers that dump full requests at INFO
_NOISY_LOGGERS = (
    "azure",
    "azure.core.pipeline",
    "azure.core.pipeline.policies.http_logging_policy",
    "azure.identity",
    "azure.keyvault",
    "azure.mgmt",
    "azure.storage",
    "urllib3",
)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_list(name: str, default: str = "") -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class LoggingConfig:
    """Console and file logging."""

    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    format: str = field(
        default_factory=lambda: os.getenv(
            "LOG_FORMAT", "%(log_color)s%(levelname)-8s%(reset)s %(name)s: %(message)s"
        )
    )
    file_output: Optional[str] = field(default_factory=lambda: os.getenv("LOG_FILE"))

    def __post_init__(self) -> None:
        level = self.level.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Log level must be one of: {LOG_LEVELS}")
        self.level = level

    def get_log_level(self) -> int:
        return logging.getLevelName(self.level)


@dataclass
class RetryConfig:
    """Retries of transient provider errors (throttling, 5xx, connection resets)."""

    max_retries: int = field(
        default_factory=lambda: int(os.getenv("AZOPS_MAX_RETRIES", "3"))
    )
    retry_delay: float = field(
        default_factory=lambda: float(os.getenv("AZOPS_RETRY_DELAY", "1.0"))
    )

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("Max retries must be non-negative")
        if self.retry_delay < 0:
            raise ValueError("Retry delay must be non-negative")


@dataclass
class PollingConfig:
    """Configuration for polling asynchronous provider operations."""

    interval: float = field(
        default_factory=lambda: float(os.getenv("AZOPS_POLL_INTERVAL", "5"))
    )
    max_wait: float = field(default_factory=lambda: float(Timeouts.CONTAINER_POLL))
    container_cooldown: float = field(
        default_factory=lambda: float(os.getenv("AZOPS_CONTAINER_COOLDOWN", "60"))
    )

    def __post_init__(self) -> None:
        if self.interval <= 0:
            raise ValueError("Poll interval must be positive")
        if self.max_wait < self.interval:
            raise ValueError("Poll max wait must be at least one poll interval")
        if self.container_cooldown < 0:
            raise ValueError("Container cooldown must be non-negative")


@dataclass
class NetworkConfig:
    """Configuration for temporary firewall exceptions."""

    public_ip_url: str = field(
        default_factory=lambda: os.getenv(
            "AZOPS_PUBLIC_IP_URL", "https://api.ipify.org"
        )
    )
    settle_seconds: float = field(
        default_factory=lambda: float(os.getenv("AZOPS_NETWORK_SETTLE_SECONDS", "30"))
    )
    manage_public_access: bool = field(
        default_factory=lambda: _env_flag("AZOPS_MANAGE_PUBLIC_ACCESS", "true")
    )

    def __post_init__(self) -> None:
        if not self.public_ip_url.startswith("https://"):
            raise ValueError("Public IP lookup URL must use HTTPS")
        if self.settle_seconds < 0:
            raise ValueError("Network settle time must be non-negative")


@dataclass
class AzCopyConfig:
    """Configuration for the AzCopy executable."""

    path: str = field(default_factory=lambda: os.getenv("AZCOPY_PATH", "azcopy"))
    auto_login_type: str = field(
        default_factory=lambda: os.getenv("AZCOPY_AUTO_LOGIN_TYPE", "AZCLI")
    )

    def __post_init__(self) -> None:
        valid_types = ["AZCLI", "MSI", "SPN", "PSCRED", "DEVICE"]
        if self.auto_login_type.upper() not in valid_types:
            raise ValueError(f"AzCopy auto login type must be one of: {valid_types}")
        self.auto_login_type = self.auto_login_type.upper()


@dataclass
class RbacConfig:
    """Configuration for role assignment reconciliation."""

    managed_display_name_prefixes: List[str] = field(
        default_factory=lambda: _env_list(
            "AZOPS_RBAC_MANAGED_PREFIXES", "Microsoft Defender for Cloud"
        )
    )


@dataclass
class AuthConfig:
    """Configuration for how procedures authenticate."""

    use_managed_identity: bool = field(
        default_factory=lambda: _env_flag("AZOPS_USE_MANAGED_IDENTITY")
    )
    managed_identity_client_id: Optional[str] = field(
        default_factory=lambda: os.getenv("AZOPS_MANAGED_IDENTITY_CLIENT_ID")
    )
    subscription_id: Optional[str] = field(
        default_factory=lambda: os.getenv("AZURE_SUBSCRIPTION_ID")
    )


@dataclass
class AzureOpsConfig:
    """All configuration sections for one command invocation."""

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    azcopy: AzCopyConfig = field(default_factory=AzCopyConfig)
    rbac: RbacConfig = field(default_factory=RbacConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)

    @classmethod
    def from_environment(
        cls,
        log_level: Optional[str] = None,
        use_managed_identity: Optional[bool] = None,
        max_retries: Optional[int] = None,
    ) -> "AzureOpsConfig":
        """
        Build the configuration from the environment, then apply CLI overrides.

        Overrides are not validated here; call ``validate_all`` afterwards.
        """
        config = cls()

        if log_level is not None:
            config.logging.level = log_level
        if use_managed_identity is not None:
            config.auth.use_managed_identity = use_managed_identity
        if max_retries is not None:
            config.retry.max_retries = max_retries

        # Unattended runs authenticate AzCopy with the same managed identity
        if config.auth.use_managed_identity:
            config.azcopy.auto_login_type = "MSI"

        return config

    def validate_all(self) -> None:
        """Re-run every section's validation (after overrides were applied)."""
        for section in (self.logging, self.retry, self.polling, self.network, self.azcopy):
            try:
                section.__post_init__()
            except ValueError as e:
                logger.error(f"Invalid {type(section).__name__}: {e}")
                raise
        logger.debug("Configuration validation successful")

    def log_configuration_summary(self) -> None:
        """Log the effective configuration. Client IDs are left out."""
        auth = (
            "managed identity"
            if self.auth.use_managed_identity
            else "default credential chain"
        )
        lines = [
            f"Auth: {auth} (subscription {self.auth.subscription_id or 'not set'})",
            f"Retry: {self.retry.max_retries} attempts, {self.retry.retry_delay}s base delay",
            f"Polling: every {self.polling.interval}s up to {self.polling.max_wait}s, "
            f"{self.polling.container_cooldown}s container cool-down",
            f"Network: {self.network.settle_seconds}s settle, "
            f"toggle public access={self.network.manage_public_access}",
            f"AzCopy: {self.azcopy.path} (login {self.azcopy.auto_login_type})",
            f"RBAC managed prefixes: {', '.join(self.rbac.managed_display_name_prefixes) or '-'}",
            f"Logging: {self.logging.level}"
            + (f" -> {self.logging.file_output}" if self.logging.file_output else ""),
        ]
        logger.info("azops configuration:")
        for line in lines:
            logger.info(f"  {line}")

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict of the configuration, without client IDs."""
        return {
            "logging": {
                "level": self.logging.level,
                "file_output": self.logging.file_output,
            },
            "retry": {
                "max_retries": self.retry.max_retries,
                "retry_delay": self.retry.retry_delay,
            },
            "polling": {
                "interval": self.polling.interval,
                "max_wait": self.polling.max_wait,
                "container_cooldown": self.polling.container_cooldown,
            },
            "network": {
                "public_ip_url": self.network.public_ip_url,
                "settle_seconds": self.network.settle_seconds,
                "manage_public_access": self.network.manage_public_access,
            },
            "azcopy": {
                "path": self.azcopy.path,
                "auto_login_type": self.azcopy.auto_login_type,
            },
            "rbac": {
                "managed_display_name_prefixes": self.rbac.managed_display_name_prefixes,
            },
            "auth": {
                "use_managed_identity": self.auth.use_managed_identity,
                "subscription_id": self.auth.subscription_id,
            },
        }


def setup_logging(config: LoggingConfig) -> None:
    """
    Configure the root logger: coloured console output, optional plain file output.

    Azure SDK and urllib3 loggers are held at WARNING unless the level is DEBUG.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(config.get_log_level())

    console = colorlog.StreamHandler()
    console.setFormatter(colorlog.ColoredFormatter(config.format))
    root.addHandler(console)

    if config.file_output:
        file_handler = logging.FileHandler(config.file_output, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        root.addHandler(file_handler)

    sdk_level = logging.DEBUG if config.level == "DEBUG" else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(sdk_level)

    logger.debug(
        f"Logging configured: level={config.level}, file={config.file_output or 'none'}"
    )


def create_config_from_env(
    log_level: Optional[str] = None,
    use_managed_identity: Optional[bool] = None,
    max_retries: Optional[int] = None,
) -> AzureOpsConfig:
    """
    Build and validate the configuration for a command.

    Raises:
        ValueError: If any section is invalid
    """
    config = AzureOpsConfig.from_environment(
        log_level=log_level,
        use_managed_identity=use_managed_identity,
        max_retries=max_retries,
    )
    config.validate_all()
    return config
