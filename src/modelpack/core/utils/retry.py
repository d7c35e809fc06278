"""Retry with exponential backoff for flaky network calls."""

import logging
import random
import time
from typing import Callable, Tuple, Type, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhaustedError(Exception):
    """Raised when max retry attempts are exceeded."""

    pass


def get_backoff_delay(
    attempt: int,
    base: float = 0.5,
    max_seconds: float = 10.0,
    jitter: float = 0.2,
) -> float:
    """
    Exponential backoff delay in seconds for a zero-based attempt number.

    Jitter is a fraction (0.2 = +/-20%) applied after clamping to max_seconds.
    """
    delay = min(base * (2**attempt), max_seconds)
    return delay * random.uniform(1 - jitter, 1 + jitter)


def retry_with_backoff(
    func: Callable[[], T],
    retryable_exceptions: Tuple[Type[BaseException], ...],
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    jitter: float = 0.2,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call func until it succeeds, retrying only on retryable_exceptions.

    Args:
        func: Zero-argument callable to execute
        retryable_exceptions: Exception types that trigger another attempt
        max_attempts: Maximum number of attempts (default: 3)
        base_delay: Base delay between retries in seconds (default: 0.5)
        max_delay: Maximum delay between retries (default: 10.0)
        jitter: Jitter factor (0.0-1.0) to add randomness (default: 0.2)
        sleep: Sleep function, replaceable in tests

    Returns:
        Result from the successful call

    Raises:
        RetryExhaustedError: If max attempts exceeded
        Exception: If a non-retryable exception occurs
    """
    name = getattr(func, "__name__", repr(func))

    for attempt in range(max_attempts):
        try:
            result = func()
        except retryable_exceptions as e:
            if attempt >= max_attempts - 1:
                log.warning(f"Max retries ({max_attempts}) exhausted for {name}")
                raise RetryExhaustedError(
                    f"Failed after {max_attempts} attempts: {e}"
                ) from e

            delay = get_backoff_delay(attempt, base_delay, max_delay, jitter=jitter)
            log.debug(
                f"Retry {attempt + 1}/{max_attempts} for {name} after {delay:.2f}s: {e}"
            )
            sleep(delay)
            continue

        if attempt > 0:
            log.info(f"Retry succeeded on attempt {attempt + 1}/{max_attempts}")
        return result

    raise RetryExhaustedError(f"Failed after {max_attempts} attempts")
