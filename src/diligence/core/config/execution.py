"""Retry, circuit breaker, and endpoint configuration models.

Defines models for retry backoff, per-endpoint circuit breakers,
and the provider endpoints probed by health checks.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from diligence.core.constants import RETRYABLE_STATUS_CODES


class RetryConfig(BaseModel):
    """Configuration for retry behavior of provider calls.

    Delay before retry ``n`` (0-based) is
    ``base_delay_seconds * exponential_base ** n``, bounded by
    ``max_delay_seconds``. The defaults give waits of 30s, 60s and 120s.
    """

    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    base_delay_seconds: float = Field(
        default=30.0, gt=0, description="Initial delay between retries"
    )
    max_delay_seconds: float = Field(
        default=300.0, gt=0, description="Ceiling for any single backoff wait"
    )
    exponential_base: float = Field(default=2.0, ge=1, description="Exponential backoff multiplier")
    honor_retry_after: bool = Field(
        default=True,
        description="Wait at least the provider's Retry-After value when one is given",
    )
    retryable_status_codes: list[int] = Field(
        default_factory=lambda: sorted(RETRYABLE_STATUS_CODES),
        description="HTTP status codes treated as transient",
    )

    @model_validator(mode="after")
    def _validate_delay_range(self) -> RetryConfig:
        if self.base_delay_seconds > self.max_delay_seconds:
            raise ValueError(
                f"base_delay_seconds ({self.base_delay_seconds}) must not exceed "
                f"max_delay_seconds ({self.max_delay_seconds})"
            )
        return self


class CircuitBreakerConfig(BaseModel):
    """Configuration for the per-endpoint circuit breaker.

    State transitions:
    - CLOSED (normal): Calls flow through, failures are tracked
    - OPEN (blocking): Calls short-circuit after failure_threshold is reached
    - HALF_OPEN (testing): Exactly one trial call is admitted

    A failed trial reopens the circuit with the cooldown multiplied by
    ``cooldown_multiplier``, up to ``max_cooldown_seconds``.

    Example:
        circuit_breaker:
          failure_threshold: 5
          cooldown_seconds: 60
          cooldown_multiplier: 2.0
    """

    failure_threshold: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Consecutive failures before opening the circuit",
    )
    cooldown_seconds: float = Field(
        default=60.0,
        gt=0,
        le=3600,
        description="Seconds to stay OPEN before admitting a trial call",
    )
    cooldown_multiplier: float = Field(
        default=1.0,
        ge=1.0,
        description="Factor applied to the cooldown after a failed trial",
    )
    max_cooldown_seconds: float = Field(
        default=900.0,
        gt=0,
        description="Upper bound for an escalated cooldown",
    )

    @model_validator(mode="after")
    def _validate_cooldown_range(self) -> CircuitBreakerConfig:
        if self.cooldown_seconds > self.max_cooldown_seconds:
            raise ValueError(
                f"cooldown_seconds ({self.cooldown_seconds}) must not exceed "
                f"max_cooldown_seconds ({self.max_cooldown_seconds})"
            )
        return self


class EndpointConfig(BaseModel):
    """A provider endpoint and its call policy overrides."""

    name: str = Field(description="Endpoint key, e.g. JINA_API")
    url: str = Field(default="", description="URL probed by health checks")
    timeout_seconds: float = Field(
        default=30.0, gt=0, description="Timeout applied to each call attempt"
    )
    health_check: bool = Field(
        default=True, description="Include this endpoint in health checks"
    )
    retry: RetryConfig | None = Field(
        default=None, description="Retry override; falls back to the global retry config"
    )
    circuit_breaker: CircuitBreakerConfig | None = Field(
        default=None,
        description="Breaker override; falls back to the global circuit breaker config",
    )


def default_endpoints() -> dict[str, EndpointConfig]:
    """Named provider endpoints known out of the box."""
    return {
        "JINA_API": EndpointConfig(
            name="JINA_API",
            url="https://deepsearch.jina.ai/v1/chat/completions",
            timeout_seconds=120.0,
        ),
        "CLAUDE_API": EndpointConfig(
            name="CLAUDE_API",
            url="https://api.anthropic.com/v1/messages",
            timeout_seconds=60.0,
        ),
    }
