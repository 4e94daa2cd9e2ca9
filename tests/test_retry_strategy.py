"""Tests for diligence.execution.retry_strategy module."""

from datetime import UTC, datetime, timedelta

import pytest

from diligence.core.config import RetryConfig
from diligence.core.errors import ErrorCategory, ErrorClassifier
from diligence.execution.retry_strategy import (
    BackoffPolicy,
    RetryAttempt,
    RetryDecision,
    estimate_success_rate,
)

classifier = ErrorClassifier()


class TestRetryDecision:
    """Tests for RetryDecision dataclass."""

    def test_negative_delay_rejected(self):
        with pytest.raises(ValueError, match="delay_seconds"):
            RetryDecision(should_retry=True, delay_seconds=-1, reason="x")

    def test_to_dict_rounds_delay(self):
        decision = RetryDecision(should_retry=True, delay_seconds=1.23456, reason="r")
        assert decision.to_dict()["delay_seconds"] == 1.23


class TestBackoffDelays:
    """Tests for exponential delay calculation."""

    def test_default_schedule(self):
        policy = BackoffPolicy()
        assert [policy.delay_for(n) for n in range(3)] == [30, 60, 120]

    def test_delay_capped_at_max(self):
        policy = BackoffPolicy()
        assert policy.delay_for(4) == 300

    def test_retry_after_raises_delay(self):
        policy = BackoffPolicy()
        assert policy.delay_for(0, retry_after=90) == 90
        assert policy.delay_for(2, retry_after=90) == 120

    def test_retry_after_still_capped(self):
        policy = BackoffPolicy()
        assert policy.delay_for(0, retry_after=1000) == 300

    def test_retry_after_ignored_when_disabled(self):
        policy = BackoffPolicy(RetryConfig(honor_retry_after=False))
        assert policy.delay_for(0, retry_after=90) == 30

    def test_next_retry_at(self):
        now = datetime(2026, 1, 1, tzinfo=UTC)
        assert BackoffPolicy().next_retry_at(1, now) == now + timedelta(seconds=60)


class TestBackoffDecisions:
    """Tests for retry/no-retry decisions."""

    def test_recoverable_error_retries(self):
        error = classifier.classify(ConnectionError("connection reset"))
        decision = BackoffPolicy().decide(error, attempt=0)

        assert decision.should_retry
        assert decision.delay_seconds == 30

    def test_non_recoverable_error_does_not_retry(self):
        error = classifier.classify("401 Unauthorized")
        decision = BackoffPolicy().decide(error, attempt=0)

        assert not decision.should_retry
        assert "not recoverable" in decision.reason

    def test_exhausted_after_max_retries(self):
        error = classifier.classify(ConnectionError("connection reset"))
        decision = BackoffPolicy().decide(error, attempt=3)

        assert not decision.should_retry
        assert "exhausted" in decision.reason

    def test_non_retryable_status_code(self):
        error = classifier.classify({"status_code": 501, "message": "Not Implemented"})
        assert error.category == ErrorCategory.SERVER_ERROR

        decision = BackoffPolicy().decide(error, attempt=0)

        assert not decision.should_retry
        assert "501" in decision.reason

    def test_retry_after_hint_used(self):
        error = classifier.classify(
            {"status_code": 429, "headers": {"Retry-After": "90"}}
        )
        decision = BackoffPolicy().decide(error, attempt=1)

        assert decision.should_retry
        assert decision.delay_seconds == 90

    def test_zero_max_retries_never_retries(self):
        error = classifier.classify(ConnectionError("connection reset"))
        decision = BackoffPolicy(RetryConfig(max_retries=0)).decide(error, attempt=0)

        assert not decision.should_retry


class TestRetryConfigValidation:
    """Tests for RetryConfig bounds."""

    def test_base_above_max_rejected(self):
        with pytest.raises(ValueError, match="must not exceed"):
            RetryConfig(base_delay_seconds=400, max_delay_seconds=300)


class TestEstimateSuccessRate:
    """Tests for the retry success estimate."""

    def test_prior_without_history(self):
        assert estimate_success_rate(ErrorCategory.RATE_LIMIT) == 90
        assert estimate_success_rate(ErrorCategory.UNKNOWN) == 30

    def test_history_blends_and_penalises(self):
        history = [
            RetryAttempt(attempt_number=1, succeeded=False),
            RetryAttempt(attempt_number=2, succeeded=False),
        ]
        # 90 * 0.6 + 0 * 0.4 = 54, minus 2 * 15
        assert estimate_success_rate(ErrorCategory.RATE_LIMIT, history) == 24

    def test_floor(self):
        history = [RetryAttempt(attempt_number=n, succeeded=False) for n in range(1, 6)]
        assert estimate_success_rate(ErrorCategory.AUTHENTICATION, history) == 5

    def test_successful_history_raises_estimate(self):
        history = [RetryAttempt(attempt_number=n, succeeded=True) for n in range(1, 6)]
        estimate = estimate_success_rate(ErrorCategory.SERVER_ERROR, history)
        assert estimate > estimate_success_rate(ErrorCategory.SERVER_ERROR)
