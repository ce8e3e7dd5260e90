"""
Exception hierarchy for azops.

Every procedure raises these so that precondition failures, provider errors and
configuration problems reach the CLI boundary with an error code, context and,
where one exists, a suggestion the operator can act on.
"""

from typing import Any, Dict, List, Optional


def _with_context(kwargs: Dict[str, Any], **values: Any) -> Dict[str, Any]:
    """Merge the non-empty ``values`` into ``kwargs['context']``."""
    context = dict(kwargs.get("context") or {})
    context.update({k: v for k, v in values.items() if v not in (None, [], "")})
    kwargs["context"] = context
    return kwargs


class AzureOpsError(Exception):
    """
    Base exception class for all azops errors.

    Subclasses set ``default_error_code`` and ``default_suggestion``; callers
    can override either per instance.
    """

    default_error_code: Optional[str] = None
    default_suggestion: Optional[str] = None

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recovery_suggestion: Optional[str] = None,
    ) -> None:
        """
        Args:
            message: Human-readable error message
            error_code: Code for programmatic handling (defaults per class)
            context: Resource names, IDs and other details of the failure
            cause: Underlying exception, usually from the Azure SDK
            recovery_suggestion: What the operator can do about it
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.context = context or {}
        self.cause = cause
        self.recovery_suggestion = recovery_suggestion or self.default_suggestion

    def __str__(self) -> str:
        parts = [f"[{self.error_code}] {self.message}" if self.error_code else self.message]
        if self.context:
            parts.append(
                "(context: " + ", ".join(f"{k}={v}" for k, v in self.context.items()) + ")"
            )
        if self.cause:
            parts.append(f"(caused by: {self.cause})")
        if self.recovery_suggestion:
            parts.append(f"(suggestion: {self.recovery_suggestion})")
        return " ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """Serialisable form for debug logs and JSON results."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
            "recovery_suggestion": self.recovery_suggestion,
        }


# Azure provider errors
class AzureError(AzureOpsError):
    """Base class for errors reported by Azure or Azure tooling."""


class AzureAuthenticationError(AzureError):
    default_error_code = "AZURE_AUTH_FAILED"
    default_suggestion = "Run 'az login', or check the managed identity assignment"

    def __init__(self, message: str, tenant_id: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **_with_context(kwargs, tenant_id=tenant_id))


class AzureSubscriptionError(AzureError):
    """Subscription missing, disabled or not the one that was asked for."""

    default_error_code = "AZURE_SUBSCRIPTION_ERROR"
    default_suggestion = "Check the subscription ID and that your identity can read it"

    def __init__(
        self, message: str, subscription_id: Optional[str] = None, **kwargs: Any
    ) -> None:
        super().__init__(
            message, **_with_context(kwargs, subscription_id=subscription_id)
        )


class MissingResourceError(AzureError):
    """One or more required resources do not exist.

    ``missing`` lists every failed precondition, not just the first.
    """

    default_error_code = "RESOURCE_NOT_FOUND"

    def __init__(
        self,
        message: str,
        missing: Optional[List[str]] = None,
        resource_type: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.missing = list(missing or [])
        super().__init__(
            message,
            **_with_context(kwargs, missing=self.missing, resource_type=resource_type),
        )


class PublicIpLookupError(AzureError):
    default_error_code = "PUBLIC_IP_LOOKUP_FAILED"
    default_suggestion = "Check outbound connectivity or set AZOPS_PUBLIC_IP_URL"

    def __init__(self, message: str, url: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **_with_context(kwargs, url=url))


class NetworkRuleError(AzureError):
    """A firewall rule or the public network access switch could not be changed."""

    default_error_code = "NETWORK_RULE_FAILED"

    def __init__(
        self,
        message: str,
        resource_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            **_with_context(kwargs, resource_id=resource_id, ip_address=ip_address),
        )


class AzCopyError(AzureError):
    default_error_code = "AZCOPY_FAILED"
    default_suggestion = "Check the AzCopy log and that AzCopy is installed and logged in"

    def __init__(
        self, message: str, returncode: Optional[int] = None, **kwargs: Any
    ) -> None:
        self.returncode = returncode
        super().__init__(message, **_with_context(kwargs, returncode=returncode))


class AzureCliError(AzureError):
    default_error_code = "AZURE_CLI_FAILED"

    def __init__(
        self, message: str, command: Optional[List[str]] = None, **kwargs: Any
    ) -> None:
        # Only the verb is kept; later arguments may carry secrets
        summary = " ".join(command[:4]) if command else None
        super().__init__(message, **_with_context(kwargs, command=summary))


# Configuration errors
class ConfigurationError(AzureOpsError):
    """Base class for configuration errors."""


class InvalidConfigurationError(ConfigurationError):
    """A configuration file or setting failed validation."""

    default_error_code = "INVALID_CONFIG"
    default_suggestion = "Fix the listed problems in the file or environment variables"

    def __init__(
        self,
        message: str,
        config_section: Optional[str] = None,
        validation_errors: Optional[List[str]] = None,
        **kwargs: Any,
    ) -> None:
        self.validation_errors = list(validation_errors or [])
        super().__init__(
            message,
            **_with_context(
                kwargs,
                config_section=config_section,
                validation_errors=self.validation_errors,
            ),
        )


class MissingConfigurationError(ConfigurationError):
    default_error_code = "MISSING_CONFIG"

    def __init__(
        self, message: str, missing_keys: Optional[List[str]] = None, **kwargs: Any
    ) -> None:
        if missing_keys:
            kwargs.setdefault(
                "recovery_suggestion", f"Provide {', '.join(missing_keys)}"
            )
        super().__init__(message, **_with_context(kwargs, missing_keys=missing_keys))


class PollTimeoutError(AzureOpsError):
    """A bounded poll gave up before observing the expected state."""

    default_error_code = "POLL_TIMEOUT"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        timeout_value: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        self.operation = operation
        self.timeout_value = timeout_value
        timeout = f"{timeout_value}s" if timeout_value is not None else None
        super().__init__(
            message, **_with_context(kwargs, operation=operation, timeout=timeout)
        )


def wrap_azure_exception(
    exc: Exception, context: Optional[Dict[str, Any]] = None
) -> AzureError:
    """
    Map an Azure SDK exception onto the azops hierarchy.

    401/403 become ``AzureAuthenticationError``, 404 ``MissingResourceError``,
    subscription problems ``AzureSubscriptionError``; anything else a plain
    ``AzureError``. The SDK exception is kept as ``cause``.
    """
    text = str(exc)
    lowered = text.lower()
    status_code = getattr(exc, "status_code", None)

    if status_code in (401, 403) or "authentication" in lowered or "unauthorized" in lowered:
        return AzureAuthenticationError(
            f"Azure authentication failed: {text}", context=context, cause=exc
        )
    if status_code == 404:
        return MissingResourceError(
            f"Azure resource not found: {text}", context=context, cause=exc
        )
    if "subscription" in lowered:
        return AzureSubscriptionError(
            f"Azure subscription error: {text}", context=context, cause=exc
        )
    return AzureError(f"Azure operation failed: {text}", context=context, cause=exc)
