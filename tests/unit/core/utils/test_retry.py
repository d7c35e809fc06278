"""Tests for retry with exponential backoff."""

import pytest

from modelpack.core.utils.retry import (
    RetryExhaustedError,
    get_backoff_delay,
    retry_with_backoff,
)


class Flaky:
    def __init__(self, failures: int, exc: type = ConnectionError):
        self.failures = failures
        self.exc = exc
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc("transient")
        return "ok"


class TestGetBackoffDelay:
    def test_exponential_growth_without_jitter(self):
        assert get_backoff_delay(0, base=0.5, jitter=0) == 0.5
        assert get_backoff_delay(1, base=0.5, jitter=0) == 1.0
        assert get_backoff_delay(2, base=0.5, jitter=0) == 2.0

    def test_clamped_to_max(self):
        assert get_backoff_delay(10, base=1.0, max_seconds=5.0, jitter=0) == 5.0

    def test_jitter_bounds(self):
        for _ in range(50):
            delay = get_backoff_delay(1, base=1.0, jitter=0.2)
            assert 1.6 <= delay <= 2.4


class TestRetryWithBackoff:
    def test_first_try_success(self):
        func = Flaky(0)
        sleeps = []

        assert retry_with_backoff(func, (ConnectionError,), sleep=sleeps.append) == "ok"
        assert func.calls == 1
        assert sleeps == []

    def test_success_after_retries(self):
        func = Flaky(2)
        sleeps = []

        result = retry_with_backoff(
            func, (ConnectionError,), max_attempts=3, jitter=0, sleep=sleeps.append
        )

        assert result == "ok"
        assert func.calls == 3
        assert sleeps == [0.5, 1.0]

    def test_exhausted(self):
        func = Flaky(5)

        with pytest.raises(RetryExhaustedError) as exc_info:
            retry_with_backoff(func, (ConnectionError,), max_attempts=3, sleep=lambda s: None)

        assert func.calls == 3
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    def test_non_retryable_propagates(self):
        func = Flaky(1, exc=ValueError)

        with pytest.raises(ValueError):
            retry_with_backoff(func, (ConnectionError,), sleep=lambda s: None)

        assert func.calls == 1
