from __future__ import annotations

from uploadman.errors import ConfigurationError, SourceUnavailableError, TransferError
from uploadman.retry import RetryPolicy


def test_backoff_doubles_per_retry() -> None:
    policy = RetryPolicy()

    assert [policy.delay_for(count) for count in (1, 2, 3)] == [2.0, 4.0, 8.0]


def test_should_retry_stops_at_max() -> None:
    policy = RetryPolicy(max_retries=3)

    assert policy.should_retry(2) is True
    assert policy.should_retry(3) is False


def test_configuration_errors_are_not_retryable() -> None:
    assert RetryPolicy.is_retryable(TransferError("503", status=503)) is True
    assert RetryPolicy.is_retryable(TimeoutError()) is True
    assert RetryPolicy.is_retryable(ConfigurationError("no url")) is False
    assert RetryPolicy.is_retryable(SourceUnavailableError("gone")) is False


def test_max_retries_is_at_least_one() -> None:
    policy = RetryPolicy(max_retries=0)

    assert policy.max_retries == 1
    assert policy.should_retry(0) is True
    assert policy.should_retry(1) is False
