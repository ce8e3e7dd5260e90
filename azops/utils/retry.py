"""Bounded retry and polling helpers for provider calls.

Every provider call that can fail transiently goes through
``retry_with_backoff``; every asynchronous provider operation (container
delete/create) is observed through ``poll_until``, which always gives up with
a ``PollTimeoutError`` instead of waiting forever.
"""

import logging
import time
from typing import Callable, Optional, TypeVar

from azure.core.exceptions import HttpResponseError, ServiceRequestError

from ..exceptions import PollTimeoutError
from ..timeout_config import log_timeout_event

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def is_transient_error(exc: BaseException) -> bool:
    """Return True for throttling, server-side and connection errors."""
    if isinstance(exc, ServiceRequestError):
        return True
    if isinstance(exc, HttpResponseError):
        return getattr(exc, "status_code", None) in RETRYABLE_STATUS_CODES
    return False


def retry_with_backoff(
    operation: Callable[[], T],
    description: str,
    max_retries: int = 3,
    base_delay: float = 1.0,
    is_retryable: Callable[[BaseException], bool] = is_transient_error,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Execute operation with exponential backoff retry logic.

    Args:
        operation: Zero-argument callable performing one provider call
        description: Human readable name used in log lines
        max_retries: Number of retries after the first attempt
        base_delay: Delay before the first retry, doubled on every retry
        is_retryable: Predicate deciding whether an error is worth retrying
        sleep: Sleep function (injected by tests)

    Returns:
        Whatever the operation returns

    Raises:
        The last error once retries are exhausted, or any non-retryable error
        immediately.
    """
    attempt = 0
    while True:
        try:
            return operation()
        except Exception as e:
            if not is_retryable(e) or attempt >= max_retries:
                if attempt:
                    logger.error(
                        f"{description} failed after {attempt + 1} attempts: {e}"
                    )
                raise
            sleep_time = base_delay * (2**attempt)
            status_code = getattr(e, "status_code", None)
            logger.warning(
                f"{description} failed transiently (status={status_code}), "
                f"retrying after {sleep_time} seconds (attempt {attempt + 1}/{max_retries})"
            )
            sleep(sleep_time)
            attempt += 1


def poll_until(
    condition: Callable[[], bool],
    description: str,
    interval: float = 5.0,
    timeout: float = 600.0,
    sleep: Callable[[float], None] = time.sleep,
    clock: Optional[Callable[[], float]] = None,
) -> int:
    """Poll ``condition`` at a fixed interval until it holds.

    Args:
        condition: Callable returning True once the awaited state is observed
        description: Human readable name used in log lines and errors
        interval: Seconds between polls
        timeout: Maximum seconds to wait before giving up
        sleep: Sleep function (injected by tests)
        clock: Monotonic clock (injected by tests)

    Returns:
        Number of polls performed

    Raises:
        PollTimeoutError: If the condition does not hold within ``timeout``
    """
    clock = clock or time.monotonic
    deadline = clock() + timeout
    polls = 0
    while True:
        polls += 1
        if condition():
            logger.debug(f"{description}: observed after {polls} poll(s)")
            return polls
        if clock() + interval > deadline:
            log_timeout_event(description, timeout, level="error")
            raise PollTimeoutError(
                f"Timed out waiting for {description}",
                operation=description,
                timeout_value=timeout,
            )
        logger.info(f"Waiting for {description}... (poll {polls})")
        sleep(interval)
