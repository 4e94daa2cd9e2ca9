"""Tests for diligence.execution.failure_handler module."""

import asyncio

import httpx
import pytest

from diligence.core.config import (
    CircuitBreakerConfig,
    DiligenceConfig,
    EndpointConfig,
    RetryConfig,
)
from diligence.core.errors import ErrorCategory, ErrorContext
from diligence.execution.circuit_breaker import CircuitBreakerRegistry, CircuitState
from diligence.execution.failure_handler import FailureHandler
from tests.helpers import FakeClock, RecordingSleep


class ScriptedProvider:
    """Provider call that replays a script of results and exceptions."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self):
        index = min(self.calls, len(self.outcomes) - 1)
        self.calls += 1
        outcome = self.outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _handler(
    config: DiligenceConfig,
    clock: FakeClock,
    sleep: RecordingSleep,
    **kwargs,
) -> FailureHandler:
    return FailureHandler(
        config,
        registry=CircuitBreakerRegistry(config, clock=clock),
        sleep=sleep,
        **kwargs,
    )


@pytest.fixture
def ctx() -> ErrorContext:
    return ErrorContext(job_id="job-1", job_type="legal_research", company_name="Acme Pvt Ltd")


class TestSuccessfulCalls:
    """Tests for calls that succeed."""

    @pytest.mark.asyncio
    async def test_first_attempt_success(self, search_api_config, clock, recording_sleep):
        handler = _handler(search_api_config, clock, recording_sleep)
        provider = ScriptedProvider({"content": "ok"})

        response = await handler.execute_with_failure_handling("SEARCH_API", provider)

        assert response.success
        assert response.data == {"content": "ok"}
        assert response.attempts == 1
        assert response.retry_count == 0
        assert not response.fallback_used
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_success_after_retries(self, search_api_config, clock, recording_sleep):
        handler = _handler(search_api_config, clock, recording_sleep)
        provider = ScriptedProvider(
            ConnectionError("connection reset"),
            {"status_code": 503, "message": "Service Unavailable"},
            {"status_code": 200, "content": "ok"},
        )

        response = await handler.execute_with_failure_handling("SEARCH_API", provider)

        assert response.success
        assert response.status_code == 200
        assert response.attempts == 3
        assert response.retry_count == 2
        assert recording_sleep.delays == [30, 60]
        assert handler.registry.get("SEARCH_API").consecutive_failures == 0


class TestExhaustedRetries:
    """Tests for calls that keep failing."""

    @pytest.mark.asyncio
    async def test_recoverable_failure_exhausts_and_falls_back(
        self, search_api_config, clock, recording_sleep, ctx
    ):
        config = search_api_config.model_copy(
            update={
                "circuit_breaker": CircuitBreakerConfig(failure_threshold=10, cooldown_seconds=60)
            }
        )
        handler = _handler(config, clock, recording_sleep)
        provider = ScriptedProvider(ConnectionError("connection reset"))

        response = await handler.execute_with_failure_handling("SEARCH_API", provider, ctx)

        assert not response.success
        assert provider.calls == 4
        assert recording_sleep.delays == [30, 60, 120]
        assert response.fallback_used
        assert not response.circuit_breaker_triggered
        assert response.fallback is not None
        assert response.fallback.success
        assert response.fallback.confidence_score == 0.3
        assert response.error_details.category == ErrorCategory.NETWORK_ERROR
        assert handler.registry.get("SEARCH_API").consecutive_failures == 4

    @pytest.mark.asyncio
    async def test_rate_limited_search_api_opens_breaker(
        self, search_api_config, clock, recording_sleep, ctx
    ):
        handler = _handler(search_api_config, clock, recording_sleep)
        provider = ScriptedProvider(RuntimeError("429 Too Many Requests"))

        response = await handler.execute_with_failure_handling("SEARCH_API", provider, ctx)

        assert provider.calls == 3
        assert recording_sleep.delays == [30, 60, 120]
        assert response.error_details.category == ErrorCategory.RATE_LIMIT
        assert response.circuit_breaker_triggered
        assert response.fallback_used
        assert response.fallback.success
        assert handler.registry.get("SEARCH_API").state == CircuitState.OPEN

        provider = ScriptedProvider({"content": "ok"})
        recording_sleep.delays.clear()
        response = await handler.execute_with_failure_handling("SEARCH_API", provider, ctx)

        assert provider.calls == 0
        assert recording_sleep.delays == []
        assert response.circuit_breaker_triggered
        assert response.fallback_used
        assert response.attempts == 0
        assert response.fallback.success

    @pytest.mark.asyncio
    async def test_breaker_open_when_retry_is_due_stops_retrying(
        self, search_api_config, clock, recording_sleep
    ):
        registry = CircuitBreakerRegistry(search_api_config, clock=clock)
        breaker = registry.get("SEARCH_API")

        async def opened_elsewhere(seconds: float) -> None:
            recording_sleep.delays.append(seconds)
            breaker.force_open()

        handler = FailureHandler(search_api_config, registry=registry, sleep=opened_elsewhere)
        provider = ScriptedProvider(ConnectionError("connection reset"))

        response = await handler.execute_with_failure_handling("SEARCH_API", provider)

        assert provider.calls == 1
        assert recording_sleep.delays == [30]
        assert response.circuit_breaker_triggered
        assert response.attempts == 1

    @pytest.mark.asyncio
    async def test_retry_after_header_honoured(self, search_api_config, clock, recording_sleep):
        handler = _handler(search_api_config, clock, recording_sleep)
        provider = ScriptedProvider({"status_code": 429, "headers": {"Retry-After": "90"}})

        response = await handler.execute_with_failure_handling("SEARCH_API", provider)

        assert recording_sleep.delays == [90, 90, 120]
        assert response.status_code == 429
        assert response.error_details.retry_after_seconds == 90

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self, search_api_config, clock, recording_sleep):
        config = search_api_config.model_copy(update={"retry": RetryConfig(max_retries=1)})
        handler = _handler(config, clock, recording_sleep)

        async def slow():
            await asyncio.sleep(5)

        response = await handler.execute_with_failure_handling("SEARCH_API", slow, timeout=0.01)

        assert not response.success
        assert response.attempts == 2
        assert response.error_details.category == ErrorCategory.TIMEOUT


class TestNonRecoverable:
    """Tests for failures that must not be retried."""

    @pytest.mark.asyncio
    async def test_authentication_not_retried(
        self, search_api_config, clock, recording_sleep, ctx
    ):
        handler = _handler(search_api_config, clock, recording_sleep)
        provider = ScriptedProvider(RuntimeError("401 Unauthorized: invalid api key"))

        response = await handler.execute_with_failure_handling("SEARCH_API", provider, ctx)

        assert provider.calls == 1
        assert recording_sleep.delays == []
        assert not response.fallback.success
        assert response.fallback.confidence_score == 0.0
        assert response.error_details.needs_manual_intervention

    @pytest.mark.asyncio
    async def test_client_error_result_not_retried(
        self, search_api_config, clock, recording_sleep
    ):
        handler = _handler(search_api_config, clock, recording_sleep)
        provider = ScriptedProvider({"status_code": 404, "message": "No such company"})

        response = await handler.execute_with_failure_handling("SEARCH_API", provider)

        assert provider.calls == 1
        assert response.status_code == 404
        assert response.error_details.category == ErrorCategory.DATA_QUALITY


class TestHalfOpenTrial:
    """Tests for the single trial call after the cooldown."""

    @pytest.mark.asyncio
    async def test_failed_trial_is_not_retried(self, search_api_config, clock, recording_sleep):
        handler = _handler(search_api_config, clock, recording_sleep)
        handler.registry.get("SEARCH_API").force_open()
        clock.advance(60)

        provider = ScriptedProvider(ConnectionError("connection reset"))
        response = await handler.execute_with_failure_handling("SEARCH_API", provider)

        assert provider.calls == 1
        assert recording_sleep.delays == []
        assert not response.success
        assert handler.registry.get("SEARCH_API").state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_successful_trial_closes(self, search_api_config, clock, recording_sleep):
        handler = _handler(search_api_config, clock, recording_sleep)
        handler.registry.get("SEARCH_API").force_open()
        clock.advance(60)

        response = await handler.execute_with_failure_handling(
            "SEARCH_API", ScriptedProvider({"content": "ok"})
        )

        assert response.success
        assert handler.registry.get("SEARCH_API").state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_cancelled_trial_hands_trial_to_next_caller(
        self, search_api_config, clock, recording_sleep
    ):
        handler = _handler(search_api_config, clock, recording_sleep)
        breaker = handler.registry.get("SEARCH_API")
        breaker.force_open()
        clock.advance(60)
        started = asyncio.Event()

        async def hanging():
            started.set()
            await asyncio.Event().wait()

        task = asyncio.create_task(handler.execute_with_failure_handling("SEARCH_API", hanging))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.can_execute()

        response = await handler.execute_with_failure_handling(
            "SEARCH_API", ScriptedProvider({"content": "ok"})
        )

        assert response.success
        assert breaker.state == CircuitState.CLOSED


class TestSharedRegistry:
    """Tests for handlers sharing one breaker registry."""

    @pytest.mark.asyncio
    async def test_empty_registry_is_shared(self, search_api_config, clock, recording_sleep):
        registry = CircuitBreakerRegistry(search_api_config, clock=clock)
        first = FailureHandler(search_api_config, registry=registry, sleep=recording_sleep)
        second = FailureHandler(search_api_config, registry=registry, sleep=recording_sleep)

        assert first.registry is registry
        assert second.registry is registry

        await first.execute_with_failure_handling(
            "SEARCH_API", ScriptedProvider(RuntimeError("429 Too Many Requests"))
        )
        provider = ScriptedProvider({"content": "ok"})
        response = await second.execute_with_failure_handling("SEARCH_API", provider)

        assert provider.calls == 0
        assert response.circuit_breaker_triggered
        assert second.get_circuit_breaker_status()["SEARCH_API"]["state"] == "open"


class TestBreakerAdministration:
    """Tests for status and reset operations."""

    @pytest.mark.asyncio
    async def test_status_and_reset(self, search_api_config, clock, recording_sleep):
        handler = _handler(search_api_config, clock, recording_sleep)
        handler.registry.get("SEARCH_API").force_open()

        status = handler.get_circuit_breaker_status()
        assert status["SEARCH_API"]["state"] == "open"

        snapshot = handler.reset_circuit_breaker("SEARCH_API")
        assert snapshot["state"] == "closed"

        response = await handler.execute_with_failure_handling(
            "SEARCH_API", ScriptedProvider({"content": "ok"})
        )
        assert response.success


class TestHealthCheck:
    """Tests for perform_health_check()."""

    @pytest.fixture
    def config(self) -> DiligenceConfig:
        return DiligenceConfig(
            endpoints={
                "UP_API": EndpointConfig(name="UP_API", url="https://up.example.com"),
                "DOWN_API": EndpointConfig(name="DOWN_API", url="https://down.example.com"),
                "NO_URL_API": EndpointConfig(name="NO_URL_API"),
                "SKIPPED_API": EndpointConfig(
                    name="SKIPPED_API", url="https://skip.example.com", health_check=False
                ),
            }
        )

    @pytest.mark.asyncio
    async def test_probes_configured_endpoints(self, config, clock, recording_sleep):
        async def probe(endpoint: EndpointConfig) -> bool:
            if endpoint.name == "DOWN_API":
                raise httpx.ConnectError("connection refused")
            return True

        handler = _handler(config, clock, recording_sleep, probe=probe)

        status = await handler.perform_health_check()

        assert status == {"UP_API": True, "DOWN_API": False, "NO_URL_API": False}

    @pytest.mark.asyncio
    async def test_health_check_leaves_breakers_alone(self, config, clock, recording_sleep):
        async def probe(endpoint: EndpointConfig) -> bool:
            return False

        handler = _handler(config, clock, recording_sleep, probe=probe)

        await handler.perform_health_check(["UP_API"])

        assert handler.get_circuit_breaker_status() == {}
