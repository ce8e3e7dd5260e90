"""Tests for the azops exception hierarchy."""

import pytest

from azops.exceptions import (
    AzureAuthenticationError,
    AzureError,
    AzureOpsError,
    AzureSubscriptionError,
    InvalidConfigurationError,
    MissingConfigurationError,
    MissingResourceError,
    PollTimeoutError,
    wrap_azure_exception,
)


class TestAzureOpsError:
    def test_str_includes_code_context_and_suggestion(self):
        error = AzureOpsError(
            "boom",
            error_code="X",
            context={"vault": "kv"},
            recovery_suggestion="try again",
        )
        assert str(error) == "[X] boom (context: vault=kv) (suggestion: try again)"

    def test_to_dict(self):
        cause = ValueError("inner")
        data = AzureOpsError("boom", cause=cause).to_dict()
        assert data["error_type"] == "AzureOpsError"
        assert data["cause"] == "inner"


class TestSpecificErrors:
    def test_missing_resource_keeps_every_item(self):
        error = MissingResourceError("2 missing", missing=["a", "b"])
        assert error.missing == ["a", "b"]
        assert error.context["missing"] == ["a", "b"]
        assert error.error_code == "RESOURCE_NOT_FOUND"

    def test_invalid_configuration_lists_validation_errors(self):
        error = InvalidConfigurationError("bad file", validation_errors=["x: y"])
        assert error.validation_errors == ["x: y"]
        assert error.error_code == "INVALID_CONFIG"

    def test_missing_configuration_suggestion(self):
        error = MissingConfigurationError("missing", missing_keys=["AZURE_SUBSCRIPTION_ID"])
        assert "AZURE_SUBSCRIPTION_ID" in error.recovery_suggestion

    def test_poll_timeout_context(self):
        error = PollTimeoutError("late", operation="deletion", timeout_value=60)
        assert error.context == {"operation": "deletion", "timeout": "60s"}


class TestWrapAzureException:
    @pytest.mark.parametrize(
        "status_code,message,expected",
        [
            (403, "Forbidden", AzureAuthenticationError),
            (404, "Not here", MissingResourceError),
            (400, "Subscription disabled", AzureSubscriptionError),
            (500, "Internal", AzureError),
        ],
    )
    def test_classification(self, http_error, status_code, message, expected):
        wrapped = wrap_azure_exception(http_error(status_code, message), {"op": "x"})
        assert type(wrapped) is expected
        assert wrapped.context["op"] == "x"
