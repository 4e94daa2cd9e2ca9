"""Retry controller wrapping provider calls with breaker and fallback policy.

Every outbound provider call goes through FailureHandler:
1. An OPEN breaker short-circuits immediately (no call, no wait)
2. The call runs under a timeout
3. Failures are classified; recoverable ones are retried with backoff
4. Every failed attempt counts against the breaker; a retry waits out
   its backoff and then needs the breaker's permission again
5. On exhaustion, or once the breaker refuses a retry, a fallback result
   is returned instead of raising

Provider failures never propagate out of this module.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict

from diligence.core.config import DiligenceConfig, EndpointConfig
from diligence.core.constants import HEALTH_CHECK_TIMEOUT_SECONDS
from diligence.core.errors import (
    EnhancedError,
    ErrorClassifier,
    ErrorContext,
    extract_status_code,
)
from diligence.core.logging import ExecutionContext, get_logger, with_context
from diligence.execution.circuit_breaker import (
    CircuitBreakerRegistry,
    CircuitState,
)
from diligence.execution.fallback import FallbackGenerator, FallbackResult
from diligence.execution.retry_strategy import BackoffPolicy

_logger = get_logger("failure_handler")

ProviderCall = Callable[[], Awaitable[Any]]
SleepFn = Callable[[float], Awaitable[None]]
HealthProbe = Callable[[EndpointConfig], Awaitable[bool]]


class ApiResponse(BaseModel):
    """Outcome of a wrapped provider call.

    On failure ``data`` holds the FallbackResult, so callers can use it
    like a provider result.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    data: Any = None
    error: str | None = None
    status_code: int | None = None
    retry_count: int = 0
    attempts: int = 0
    fallback_used: bool = False
    circuit_breaker_triggered: bool = False
    error_details: EnhancedError | None = None

    @property
    def fallback(self) -> FallbackResult | None:
        return self.data if isinstance(self.data, FallbackResult) else None


async def httpx_head_probe(endpoint: EndpointConfig) -> bool:
    """Probe an endpoint with an HTTP HEAD request."""
    async with httpx.AsyncClient(timeout=HEALTH_CHECK_TIMEOUT_SECONDS) as client:
        response = await client.head(endpoint.url)
        return response.status_code < 400


class FailureHandler:
    """Runs provider calls under circuit breaker, retry, and fallback policy.

    Args:
        config: Retry, breaker, and endpoint configuration.
        registry: Breaker registry; a private one is created if omitted.
        classifier: Error classifier; default patterns if omitted.
        fallback_generator: Builds fallback results.
        sleep: Awaitable sleep used for backoff waits (injectable for tests).
        probe: Health probe for perform_health_check().
    """

    def __init__(
        self,
        config: DiligenceConfig | None = None,
        registry: CircuitBreakerRegistry | None = None,
        classifier: ErrorClassifier | None = None,
        fallback_generator: FallbackGenerator | None = None,
        sleep: SleepFn = asyncio.sleep,
        probe: HealthProbe = httpx_head_probe,
    ) -> None:
        self.config = config if config is not None else DiligenceConfig()
        self.registry = (
            registry if registry is not None else CircuitBreakerRegistry(self.config)
        )
        self.classifier = classifier if classifier is not None else ErrorClassifier()
        self.fallback_generator = (
            fallback_generator if fallback_generator is not None else FallbackGenerator()
        )
        self._sleep = sleep
        self._probe = probe

    async def execute_with_failure_handling(
        self,
        endpoint_key: str,
        call: ProviderCall,
        context: ErrorContext | None = None,
        timeout: float | None = None,
    ) -> ApiResponse:
        """Execute a provider call with full failure handling.

        Args:
            endpoint_key: Breaker/config key of the provider, e.g. ``JINA_API``.
            call: Zero-argument coroutine factory performing one attempt.
            context: Job/company context for classification and fallbacks.
            timeout: Per-attempt timeout; defaults to the endpoint's timeout.

        Returns:
            ApiResponse with the provider result, or a fallback result.
        """
        ctx = (context or ErrorContext()).with_endpoint(endpoint_key)
        breaker = self.registry.get(endpoint_key)
        endpoint = self.config.endpoint(endpoint_key)
        attempt_timeout = timeout if timeout is not None else endpoint.timeout_seconds

        if not breaker.try_acquire():
            return self._short_circuit(endpoint_key, ctx)

        policy = BackoffPolicy(self.config.retry_for(endpoint_key))
        # A half-open breaker admits exactly one trial, so no retries
        is_trial = breaker.get_state() == CircuitState.HALF_OPEN
        log_ctx = ExecutionContext(
            job_id=ctx.job_id or "-",
            iteration_num=ctx.iteration,
            endpoint=endpoint_key,
            component="failure_handler",
        )

        attempt = 0
        tripped = False
        with with_context(log_ctx):
            try:
                while True:
                    raw_error: Any
                    try:
                        result = await asyncio.wait_for(call(), timeout=attempt_timeout)
                    except Exception as exc:
                        raw_error = exc
                    else:
                        status_code = extract_status_code(result)
                        if status_code is None or status_code < 400:
                            breaker.record_success()
                            _logger.debug(
                                "failure_handler.call_succeeded",
                                attempts=attempt + 1,
                                status_code=status_code,
                            )
                            return ApiResponse(
                                success=True,
                                data=result,
                                status_code=status_code,
                                retry_count=attempt,
                                attempts=attempt + 1,
                            )
                        raw_error = result

                    breaker.record_failure()
                    is_trial_failed = is_trial
                    is_trial = False
                    error = self.classifier.classify(raw_error, ctx.with_retry_count(attempt))
                    decision = policy.decide(error, attempt)
                    if is_trial_failed or not decision.should_retry:
                        break

                    _logger.info(
                        "failure_handler.retry_scheduled",
                        attempt=attempt + 1,
                        category=error.category.value,
                        delay_seconds=decision.delay_seconds,
                    )
                    await self._sleep(decision.delay_seconds)
                    if not breaker.try_acquire():
                        tripped = True
                        break
                    is_trial = breaker.get_state() == CircuitState.HALF_OPEN
                    attempt += 1
            except BaseException:
                # Cancelled before the trial settled; the next caller gets the trial
                if is_trial:
                    breaker.release_trial()
                raise

            if tripped:
                reason = "circuit_opened"
            elif is_trial_failed:
                reason = "trial_failed"
            else:
                reason = decision.reason
            _logger.warning(
                "failure_handler.call_failed",
                attempts=attempt + 1,
                category=error.category.value,
                recoverable=error.recoverable,
                reason=reason,
            )

        fallback = self.fallback_generator.apply_intelligent_fallback(
            error, ctx.with_retry_count(attempt)
        )
        return ApiResponse(
            success=False,
            data=fallback,
            error=error.message,
            status_code=error.status_code,
            retry_count=attempt,
            attempts=attempt + 1,
            fallback_used=True,
            circuit_breaker_triggered=tripped,
            error_details=error,
        )

    def _short_circuit(self, endpoint_key: str, ctx: ErrorContext) -> ApiResponse:
        error = self.classifier.classify_circuit_open(endpoint_key, ctx)
        fallback = self.fallback_generator.apply_intelligent_fallback(error, ctx)
        _logger.warning(
            "failure_handler.short_circuited",
            endpoint=endpoint_key,
            job_id=ctx.job_id,
        )
        return ApiResponse(
            success=False,
            data=fallback,
            error=error.message,
            retry_count=0,
            attempts=0,
            fallback_used=True,
            circuit_breaker_triggered=True,
            error_details=error,
        )

    def get_circuit_breaker_status(self) -> dict[str, dict[str, Any]]:
        """Read-only snapshot of every tracked breaker."""
        return {key: snap.to_dict() for key, snap in self.registry.snapshot().items()}

    def reset_circuit_breaker(self, endpoint_key: str) -> dict[str, Any]:
        """Force an endpoint's breaker CLOSED; returns its new snapshot."""
        snapshot = self.registry.reset(endpoint_key)
        _logger.info("failure_handler.circuit_breaker_reset", endpoint=endpoint_key)
        return snapshot.to_dict()

    async def perform_health_check(
        self,
        endpoint_keys: list[str] | None = None,
    ) -> dict[str, bool]:
        """Probe configured endpoints concurrently.

        Probes bypass the breakers entirely, so a health check never changes
        breaker accounting. Endpoints without a URL report unhealthy.
        """
        keys = endpoint_keys or [
            key for key, ep in self.config.endpoints.items() if ep.health_check
        ]
        endpoints = [self.config.endpoint(key) for key in keys]
        outcomes = await asyncio.gather(*(self._probe_one(ep) for ep in endpoints))
        status = dict(zip(keys, outcomes, strict=True))
        _logger.info("failure_handler.health_checked", status=status)
        return status

    async def _probe_one(self, endpoint: EndpointConfig) -> bool:
        if not endpoint.url:
            return False
        try:
            return await asyncio.wait_for(
                self._probe(endpoint), timeout=HEALTH_CHECK_TIMEOUT_SECONDS
            )
        except (httpx.HTTPError, OSError, TimeoutError) as exc:
            _logger.warning(
                "failure_handler.health_check_failed",
                endpoint=endpoint.name,
                error=str(exc) or type(exc).__name__,
            )
            return False


__all__ = [
    "ApiResponse",
    "FailureHandler",
    "HealthProbe",
    "ProviderCall",
    "SleepFn",
    "httpx_head_probe",
]
