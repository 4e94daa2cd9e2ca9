"""Backoff policy and retry decisions for provider calls.

Decides whether a classified failure should be retried and how long to
wait first:
- Recoverable categories retry until max_retries is spent
- Delay grows as base * multiplier ** attempt, capped at max_delay
- A provider Retry-After hint raises the delay (still capped)

Also hosts the success-rate estimator shown next to manual retry
controls.

Example usage:
    from diligence.execution.retry_strategy import BackoffPolicy

    policy = BackoffPolicy(config.retry)
    decision = policy.decide(enhanced_error, attempt=0)
    if decision.should_retry:
        await asyncio.sleep(decision.delay_seconds)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from diligence.core.config import RetryConfig
from diligence.core.errors import EnhancedError, ErrorCategory
from diligence.core.logging import get_logger

# Module-level logger
_logger = get_logger("retry_strategy")


@dataclass
class RetryDecision:
    """Whether to retry a failed call, and after how long.

    Attributes:
        should_retry: Whether another attempt should be made.
        delay_seconds: Wait before the next attempt.
        reason: Human-readable explanation of the decision.
        attempt: Zero-based index of the attempt that just failed.
    """

    should_retry: bool
    delay_seconds: float
    reason: str
    attempt: int = 0

    def __post_init__(self) -> None:
        if self.delay_seconds < 0:
            raise ValueError(f"delay_seconds must be >= 0, got {self.delay_seconds}")

    def to_dict(self) -> dict[str, object]:
        return {
            "should_retry": self.should_retry,
            "delay_seconds": round(self.delay_seconds, 2),
            "reason": self.reason,
            "attempt": self.attempt,
        }


class BackoffPolicy:
    """Exponential backoff over a RetryConfig.

    Stateless: every decision is derived from its inputs, so one policy
    can serve many concurrent calls.
    """

    def __init__(self, config: RetryConfig | None = None) -> None:
        self.config = config if config is not None else RetryConfig()

    @property
    def max_retries(self) -> int:
        return self.config.max_retries

    def delay_for(self, attempt: int, retry_after: float | None = None) -> float:
        """Delay before retrying after the given zero-based attempt.

        Args:
            attempt: Index of the attempt that just failed (0 for the first call).
            retry_after: Provider Retry-After hint in seconds, if any.

        Returns:
            Seconds to wait, never above max_delay_seconds.
        """
        delay = self.config.base_delay_seconds * (self.config.exponential_base ** attempt)
        if retry_after is not None and self.config.honor_retry_after:
            delay = max(delay, retry_after)
        return min(delay, self.config.max_delay_seconds)

    def decide(self, error: EnhancedError, attempt: int) -> RetryDecision:
        """Decide whether to retry after a failed attempt.

        Args:
            error: Classified failure of the attempt.
            attempt: Zero-based index of the attempt that just failed.
        """
        if not error.recoverable:
            return RetryDecision(
                should_retry=False,
                delay_seconds=0.0,
                reason=f"{error.category.value} is not recoverable",
                attempt=attempt,
            )
        if (
            error.status_code is not None
            and error.status_code >= 400
            and error.status_code not in self.config.retryable_status_codes
            and error.category not in (ErrorCategory.TIMEOUT, ErrorCategory.NETWORK_ERROR)
        ):
            return RetryDecision(
                should_retry=False,
                delay_seconds=0.0,
                reason=f"status {error.status_code} is not retryable",
                attempt=attempt,
            )
        if attempt >= self.config.max_retries:
            return RetryDecision(
                should_retry=False,
                delay_seconds=0.0,
                reason=f"retries exhausted after {attempt + 1} attempt(s)",
                attempt=attempt,
            )

        delay = self.delay_for(attempt, error.retry_after_seconds)
        return RetryDecision(
            should_retry=True,
            delay_seconds=delay,
            reason=f"{error.category.value} retry {attempt + 1}/{self.config.max_retries}",
            attempt=attempt,
        )

    def next_retry_at(self, attempt: int, now: datetime | None = None) -> datetime:
        """Wall-clock time of the next retry after the given attempt."""
        start = now or datetime.now(UTC)
        return start + timedelta(seconds=self.delay_for(attempt))


# =============================================================================
# Success-rate estimation
# =============================================================================


@dataclass
class RetryAttempt:
    """One past retry attempt, as shown in retry history."""

    attempt_number: int
    succeeded: bool
    category: ErrorCategory | None = None
    error_message: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))


_BASE_SUCCESS_RATES: dict[ErrorCategory, float] = {
    ErrorCategory.RATE_LIMIT: 90.0,
    ErrorCategory.NETWORK_ERROR: 85.0,
    ErrorCategory.TIMEOUT: 70.0,
    ErrorCategory.SERVER_ERROR: 40.0,
    ErrorCategory.DATA_QUALITY: 10.0,
    ErrorCategory.AUTHENTICATION: 5.0,
}
"""Prior success percentage of a retry, per failure category."""

_DEFAULT_BASE_SUCCESS_RATE = 30.0
_MAX_HISTORY_WEIGHT = 0.7
_HISTORY_FULL_WEIGHT_ATTEMPTS = 5
_PENALTY_PER_FAILURE = 15.0
_MIN_SUCCESS_RATE = 5.0


def estimate_success_rate(
    category: ErrorCategory,
    history: list[RetryAttempt] | None = None,
) -> int:
    """Estimate the chance (percent) that another retry succeeds.

    Blends a per-category prior with the observed success ratio, trusting
    history more as it grows (up to 70% weight at five attempts), then
    subtracts 15 points per failed attempt with a floor of 5. The
    constants are heuristics for display, not calibrated probabilities.
    """
    rate = _BASE_SUCCESS_RATES.get(category, _DEFAULT_BASE_SUCCESS_RATE)
    attempts = history or []
    failed = sum(1 for a in attempts if not a.succeeded)

    if attempts:
        historical = (len(attempts) - failed) / len(attempts) * 100
        weight = min(len(attempts) / _HISTORY_FULL_WEIGHT_ATTEMPTS, _MAX_HISTORY_WEIGHT)
        rate = rate * (1 - weight) + historical * weight

    rate = max(_MIN_SUCCESS_RATE, rate - failed * _PENALTY_PER_FAILURE)
    estimate = round(rate)

    _logger.debug(
        "retry_strategy.success_rate_estimated",
        category=category.value,
        attempts=len(attempts),
        failed=failed,
        estimate=estimate,
    )
    return estimate


__all__ = [
    "BackoffPolicy",
    "RetryAttempt",
    "RetryDecision",
    "estimate_success_rate",
]
