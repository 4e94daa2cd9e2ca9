"""Error categories, severities, and fallback strategies.

Contains the enums used to classify provider failures, plus the policy
table that maps each category to its severity, recoverability, and
fallback strategy.

| category       | severity | recoverable   | strategy                 |
|----------------|----------|---------------|--------------------------|
| rate_limit     | medium   | yes           | retry_with_backoff       |
| timeout        | medium   | yes           | retry_with_backoff       |
| network_error  | medium   | yes           | retry_with_backoff       |
| server_error   | high     | yes (bounded) | retry_then_circuit_break |
| authentication | high     | no            | manual_intervention      |
| data_quality   | low      | no            | professional_fallback    |
| unknown        | medium   | no            | professional_fallback    |
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories of provider failures with different handling."""

    RATE_LIMIT = "rate_limit"
    """Retriable with backoff - the provider is throttling us."""

    TIMEOUT = "timeout"
    """Retriable with backoff - the call did not finish in time."""

    NETWORK_ERROR = "network_error"
    """Retriable with backoff - connectivity or DNS problems."""

    SERVER_ERROR = "server_error"
    """Retriable a bounded number of times - provider 5xx responses."""

    AUTHENTICATION = "authentication"
    """Fatal - credentials rejected, needs an operator."""

    DATA_QUALITY = "data_quality"
    """Not retriable - the provider answered but the payload is unusable."""

    UNKNOWN = "unknown"
    """Not retriable - nothing recognisable in the failure."""


class ErrorSeverity(str, Enum):
    """Severity levels for classified errors."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class FallbackStrategy(str, Enum):
    """How a failure should be handled once classified."""

    RETRY_WITH_BACKOFF = "retry_with_backoff"
    """Retry transparently with exponential backoff."""

    RETRY_THEN_CIRCUIT_BREAK = "retry_then_circuit_break"
    """Retry a bounded number of times, then let the breaker trip."""

    MANUAL_INTERVENTION = "manual_intervention"
    """Stop and surface to an administrator."""

    PROFESSIONAL_FALLBACK = "professional_fallback"
    """Return a clearly labelled low-confidence placeholder result."""


@dataclass(frozen=True)
class CategoryPolicy:
    """Handling policy attached to an error category."""

    severity: ErrorSeverity
    recoverable: bool
    strategy: FallbackStrategy


CATEGORY_POLICIES: dict[ErrorCategory, CategoryPolicy] = {
    ErrorCategory.RATE_LIMIT: CategoryPolicy(
        ErrorSeverity.MEDIUM, True, FallbackStrategy.RETRY_WITH_BACKOFF
    ),
    ErrorCategory.TIMEOUT: CategoryPolicy(
        ErrorSeverity.MEDIUM, True, FallbackStrategy.RETRY_WITH_BACKOFF
    ),
    ErrorCategory.NETWORK_ERROR: CategoryPolicy(
        ErrorSeverity.MEDIUM, True, FallbackStrategy.RETRY_WITH_BACKOFF
    ),
    ErrorCategory.SERVER_ERROR: CategoryPolicy(
        ErrorSeverity.HIGH, True, FallbackStrategy.RETRY_THEN_CIRCUIT_BREAK
    ),
    ErrorCategory.AUTHENTICATION: CategoryPolicy(
        ErrorSeverity.HIGH, False, FallbackStrategy.MANUAL_INTERVENTION
    ),
    ErrorCategory.DATA_QUALITY: CategoryPolicy(
        ErrorSeverity.LOW, False, FallbackStrategy.PROFESSIONAL_FALLBACK
    ),
    ErrorCategory.UNKNOWN: CategoryPolicy(
        ErrorSeverity.MEDIUM, False, FallbackStrategy.PROFESSIONAL_FALLBACK
    ),
}
"""Severity, recoverability and strategy per category."""


CLASSIFICATION_PRIORITY: tuple[ErrorCategory, ...] = (
    ErrorCategory.AUTHENTICATION,
    ErrorCategory.RATE_LIMIT,
    ErrorCategory.TIMEOUT,
    ErrorCategory.SERVER_ERROR,
    ErrorCategory.NETWORK_ERROR,
    ErrorCategory.DATA_QUALITY,
)
"""Order in which categories are tested; the first match wins."""
