from __future__ import annotations

import pytest

from osdoc.bulk.retry import DEFAULT_RETRY_ON_STATUS, RetryPolicy, exponential_backoff, linear_backoff


def test_default_policy_retries_transient_statuses_only() -> None:
    policy = RetryPolicy()

    assert DEFAULT_RETRY_ON_STATUS == {429, 502, 503, 504}
    for status in (429, 502, 503, 504):
        assert policy.should_retry(1, status) is True
    for status in (400, 404, 409, 500):
        assert policy.should_retry(1, status) is False


def test_policy_stops_at_max_attempts() -> None:
    policy = RetryPolicy(max_attempts=5)

    assert [policy.should_retry(attempt, 503) for attempt in range(1, 7)] == [True, True, True, True, False, False]


def test_single_attempt_policy_never_retries() -> None:
    policy = RetryPolicy(max_attempts=1)

    assert policy.should_retry(1, 429) is False


def test_connection_errors_follow_policy_flag() -> None:
    assert RetryPolicy().should_retry(1, None) is True
    assert RetryPolicy(retry_on_connection_error=False).should_retry(1, None) is False


def test_linear_backoff_is_the_default() -> None:
    policy = RetryPolicy()

    assert [policy.backoff_delay(attempt) for attempt in (1, 2, 3, 4)] == pytest.approx([0.1, 0.2, 0.3, 0.4])


def test_linear_backoff_uses_custom_step() -> None:
    delay = linear_backoff(0.25)

    assert [delay(attempt) for attempt in (1, 2, 3)] == pytest.approx([0.25, 0.5, 0.75])


def test_exponential_backoff_is_capped() -> None:
    delay = exponential_backoff(0.5, cap_seconds=3.0)

    assert [delay(attempt) for attempt in (1, 2, 3, 4, 5)] == pytest.approx([0.5, 1.0, 2.0, 3.0, 3.0])


def test_backoff_is_pluggable() -> None:
    policy = RetryPolicy(backoff=lambda attempt: 2.0 if attempt > 1 else 0.0)

    assert policy.backoff_delay(1) == 0.0
    assert policy.backoff_delay(2) == 2.0


def test_negative_custom_backoff_is_clamped_to_zero() -> None:
    policy = RetryPolicy(backoff=lambda attempt: -1.0)

    assert policy.backoff_delay(3) == 0.0


def test_policy_validation() -> None:
    with pytest.raises(ValueError, match="max_attempts"):
        RetryPolicy(max_attempts=0)

    with pytest.raises(ValueError, match="base_seconds"):
        linear_backoff(-0.1)

    with pytest.raises(ValueError, match="cap_seconds"):
        exponential_backoff(1.0, cap_seconds=0.5)
