"""Execution layer for provider calls.

Contains the circuit breaker registry, backoff policy, fallback generator,
and the failure handler that ties them together.
"""

from diligence.execution.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitBreakerSnapshot,
    CircuitBreakerStats,
    CircuitState,
)
from diligence.execution.failure_handler import ApiResponse, FailureHandler
from diligence.execution.fallback import FallbackGenerator, FallbackResult
from diligence.execution.retry_strategy import (
    BackoffPolicy,
    RetryAttempt,
    RetryDecision,
    estimate_success_rate,
)

__all__ = [
    "ApiResponse",
    "BackoffPolicy",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitBreakerSnapshot",
    "CircuitBreakerStats",
    "CircuitState",
    "FailureHandler",
    "FallbackGenerator",
    "FallbackResult",
    "RetryAttempt",
    "RetryDecision",
    "estimate_success_rate",
]
