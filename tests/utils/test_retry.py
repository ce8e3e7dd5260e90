"""Tests for the retry and polling helpers."""

import pytest
from azure.core.exceptions import ServiceRequestError

from azops.exceptions import PollTimeoutError
from azops.utils.retry import is_transient_error, poll_until, retry_with_backoff


class TestIsTransientError:
    @pytest.mark.parametrize("status_code", [408, 429, 500, 502, 503, 504])
    def test_retryable_status_codes(self, http_error, status_code):
        assert is_transient_error(http_error(status_code))

    @pytest.mark.parametrize("status_code", [400, 401, 403, 404, 409])
    def test_client_errors_are_not_retried(self, http_error, status_code):
        assert not is_transient_error(http_error(status_code))

    def test_connection_errors_are_retried(self):
        assert is_transient_error(ServiceRequestError("reset"))

    def test_other_exceptions(self):
        assert not is_transient_error(ValueError("x"))


class TestRetryWithBackoff:
    def test_returns_first_success(self, no_sleep):
        assert retry_with_backoff(lambda: 42, "answer", sleep=no_sleep) == 42
        assert no_sleep.delays == []

    def test_exponential_backoff(self, http_error, no_sleep):
        attempts = []

        def operation():
            attempts.append(1)
            if len(attempts) < 3:
                raise http_error(429, "throttled")
            return "ok"

        result = retry_with_backoff(
            operation, "throttled call", max_retries=3, base_delay=2, sleep=no_sleep
        )

        assert result == "ok"
        assert no_sleep.delays == [2, 4]

    def test_gives_up_after_max_retries(self, http_error, no_sleep):
        def operation():
            raise http_error(503, "unavailable")

        with pytest.raises(Exception, match="unavailable"):
            retry_with_backoff(operation, "call", max_retries=2, sleep=no_sleep)

        assert len(no_sleep.delays) == 2

    def test_non_retryable_error_raises_immediately(self, http_error, no_sleep):
        def operation():
            raise http_error(403, "forbidden")

        with pytest.raises(Exception, match="forbidden"):
            retry_with_backoff(operation, "call", sleep=no_sleep)

        assert no_sleep.delays == []


class TestPollUntil:
    def test_returns_poll_count(self, no_sleep):
        answers = iter([False, False, True])

        polls = poll_until(lambda: next(answers), "thing", interval=3, sleep=no_sleep)

        assert polls == 3
        assert no_sleep.delays == [3, 3]

    def test_times_out(self):
        now = [0.0]

        def sleep(seconds):
            now[0] += seconds

        with pytest.raises(PollTimeoutError) as exc_info:
            poll_until(
                lambda: False,
                "deletion of st/data",
                interval=5,
                timeout=20,
                sleep=sleep,
                clock=lambda: now[0],
            )

        assert exc_info.value.operation == "deletion of st/data"
        assert now[0] <= 20
