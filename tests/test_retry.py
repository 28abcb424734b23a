"""
Tests for retry logic.
"""

import pytest
from permablob.retry import (
    exponential_backoff,
    should_retry_http_status,
    RetryError,
)


class TestExponentialBackoff:
    """Test exponential backoff decorator."""

    def test_success_on_first_try(self):
        """Function that succeeds immediately should not retry."""
        call_count = [0]

        @exponential_backoff(max_retries=3, base_delay=0.1, sleep=lambda s: None)
        def succeeds():
            call_count[0] += 1
            return "success"

        assert succeeds() == "success"
        assert call_count[0] == 1

    def test_retry_then_succeed(self):
        """Function that fails then succeeds should retry."""
        call_count = [0]

        @exponential_backoff(max_retries=3, base_delay=0.01)
        def fails_twice():
            call_count[0] += 1
            if call_count[0] < 3:
                raise ConnectionError("Temporary failure")
            return "success"

        assert fails_twice() == "success"
        assert call_count[0] == 3

    def test_all_retries_exhausted(self):
        """Should raise RetryError after all attempts fail."""
        call_count = [0]

        @exponential_backoff(max_retries=2, base_delay=0.01)
        def always_fails():
            call_count[0] += 1
            raise ValueError("Always fails")

        with pytest.raises(RetryError) as exc_info:
            always_fails()

        assert call_count[0] == 3  # Initial + 2 retries
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_zero_retries_is_single_attempt(self):
        call_count = [0]

        @exponential_backoff(max_retries=0, base_delay=5.0, sleep=pytest.fail)
        def always_fails():
            call_count[0] += 1
            raise ConnectionError("down")

        with pytest.raises(RetryError):
            always_fails()
        assert call_count[0] == 1

    def test_only_catches_specified_exceptions(self):
        """Should only retry on specified exception types."""
        call_count = [0]

        @exponential_backoff(
            max_retries=3,
            base_delay=0.01,
            exceptions=(ConnectionError,)
        )
        def raises_value_error():
            call_count[0] += 1
            raise ValueError("Not retryable")

        # Should not retry, raises original exception
        with pytest.raises(ValueError):
            raises_value_error()

        assert call_count[0] == 1

    def test_exponential_delay(self):
        """Delay should increase exponentially."""
        sleeps = []

        @exponential_backoff(max_retries=3, base_delay=1.0, exponential_base=2.0, sleep=sleeps.append)
        def always_fails():
            raise ConnectionError("Test")

        with pytest.raises(RetryError):
            always_fails()

        assert sleeps == [1.0, 2.0, 4.0]

    def test_fixed_delay(self):
        """exponential_base=1.0 gives a constant delay."""
        delays = []

        @exponential_backoff(
            max_retries=2,
            base_delay=2.0,
            exponential_base=1.0,
            on_retry=lambda attempt, exc, delay: delays.append((attempt, delay)),
            sleep=lambda s: None,
        )
        def always_fails():
            raise ConnectionError("Test")

        with pytest.raises(RetryError):
            always_fails()

        assert delays == [(1, 2.0), (2, 2.0)]

    def test_max_delay_cap(self):
        """Delay should not exceed max_delay."""
        sleeps = []

        @exponential_backoff(
            max_retries=5,
            base_delay=1.0,
            max_delay=2.0,
            exponential_base=3.0,
            sleep=sleeps.append,
        )
        def always_fails():
            raise ConnectionError("Test")

        with pytest.raises(RetryError):
            always_fails()

        assert all(d <= 2.0 for d in sleeps)

    def test_zero_delay_does_not_sleep(self):
        @exponential_backoff(max_retries=2, base_delay=0, sleep=pytest.fail)
        def always_fails():
            raise ConnectionError("Test")

        with pytest.raises(RetryError):
            always_fails()


class TestHttpStatus:
    """Test HTTP status classification."""

    def test_should_retry_http_status(self):
        for code in (408, 429, 500, 502, 503, 504):
            assert should_retry_http_status(code)
        for code in (200, 400, 401, 403, 404):
            assert not should_retry_http_status(code)
