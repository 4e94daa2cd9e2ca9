"""Caller-facing facade over the research core.

ResearchService wires the state machine, failure handler, quality
validator, and consolidation engine together and exposes the operations a
host application calls. It performs no I/O formatting; HTTP routing and
persistence stay with the host.

Example usage:
    service = ResearchService(DiligenceConfig.from_yaml("diligence.yaml"))
    job_id = await service.start_job("legal_research", "Acme Pvt Ltd")
    await service.run_iteration(job_id, "JINA_API", fetch_legal_findings)
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from diligence.consolidation.engine import ConsolidationEngine
from diligence.core.config import DiligenceConfig
from diligence.core.errors import EnhancedError, ErrorClassifier, ErrorCategory, ErrorContext
from diligence.core.exceptions import IterationNotFoundError
from diligence.core.logging import get_logger
from diligence.core.models import (
    RESEARCH_PRESETS,
    ConsolidatedAnalysis,
    ConsolidationStatus,
    ConsolidationStrategy,
    DataQualityReport,
    Iteration,
    IterationComparison,
    JobStatus,
    JobType,
    ResearchJob,
    ResearchPreset,
    findings_type_for,
    get_preset,
    parse_findings,
)
from diligence.execution.circuit_breaker import CircuitBreakerRegistry
from diligence.execution.failure_handler import (
    ApiResponse,
    FailureHandler,
    HealthProbe,
    ProviderCall,
    SleepFn,
    httpx_head_probe,
)
from diligence.execution.fallback import FallbackGenerator, FallbackResult
from diligence.execution.retry_strategy import RetryAttempt, estimate_success_rate
from diligence.state.base import StateBackend
from diligence.state.machine import JobStateMachine
from diligence.validation.quality import DataQualityValidator, generate_quality_summary

_logger = get_logger("service")


def _findings_from_payload(job_type: JobType, payload: Mapping[str, Any]) -> Any:
    """Findings model for a provider payload.

    ``findings`` may map category fields to lists or be a flat list of
    findings filed by their ``category``.

    Raises:
        ValidationError: If a finding or category list is malformed.
        TypeError: If ``findings`` is neither a mapping nor a list.
    """
    text = {
        "content": str(payload.get("content") or ""),
        "summary": str(payload.get("summary") or ""),
    }
    raw_findings = payload.get("findings") or {}
    if isinstance(raw_findings, list):
        return findings_type_for(job_type).from_finding_list(raw_findings, **text)
    if not isinstance(raw_findings, Mapping):
        raise TypeError(f"Unsupported findings payload: {type(raw_findings).__name__}")
    return parse_findings({"job_type": job_type.value, **text, **raw_findings})


def _provider_score(value: Any, upper: float, default: float) -> float:
    """Clamp a provider-reported score to [0, upper].

    Confidences above 1 are read as percentages. Missing or non-numeric
    values fall back to ``default``.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        score = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(score):
        return default
    if upper == 1.0 and score > 1.0:
        score /= 100
    return min(max(score, 0.0), upper)


class ResearchService:
    """Entry point for hosts running multi-iteration research jobs.

    Args:
        config: Configuration; defaults throughout if omitted.
        backend: Job storage; in-memory if omitted.
        registry: Shared circuit breaker registry (one per process).
        sleep: Awaitable sleep for retry backoff (injectable for tests).
        probe: Endpoint health probe.
    """

    def __init__(
        self,
        config: DiligenceConfig | None = None,
        backend: StateBackend | None = None,
        registry: CircuitBreakerRegistry | None = None,
        sleep: SleepFn = asyncio.sleep,
        probe: HealthProbe = httpx_head_probe,
    ) -> None:
        self.config = config if config is not None else DiligenceConfig()
        self.classifier = ErrorClassifier()
        self.fallback_generator = FallbackGenerator()
        self.state = JobStateMachine(backend, self.config.jobs, self.classifier)
        self.failure_handler = FailureHandler(
            self.config,
            registry=registry,
            classifier=self.classifier,
            fallback_generator=self.fallback_generator,
            sleep=sleep,
            probe=probe,
        )
        self.validator = DataQualityValidator(self.config.quality)
        self.consolidation = ConsolidationEngine(self.state, self.config.consolidation)

    # -------------------------------------------------------------------------
    # Jobs and iterations
    # -------------------------------------------------------------------------

    async def start_job(
        self,
        job_type: JobType | str,
        company_name: str,
        user_id: str | None = None,
        max_iterations: int | None = None,
    ) -> str:
        return await self.state.start_job(job_type, company_name, user_id, max_iterations)

    async def start_job_from_preset(
        self,
        preset_id: str,
        company_name: str,
        user_id: str | None = None,
    ) -> str:
        """Start a job using a research preset's job type and iteration count.

        Raises:
            KeyError: If the preset does not exist.
        """
        preset = get_preset(preset_id)
        if preset is None:
            raise KeyError(f"Unknown research preset: {preset_id}")
        return await self.state.start_job(
            preset.job_type, company_name, user_id, preset.max_iterations
        )

    async def start_iteration(self, job_id: str) -> int:
        return await self.state.start_iteration(job_id)

    async def complete_iteration(
        self,
        job_id: str,
        iteration_number: int,
        findings: Any,
        confidence: float,
        completeness: float,
        quality_report: DataQualityReport | None = None,
    ) -> ResearchJob:
        return await self.state.complete_iteration(
            job_id, iteration_number, findings, confidence, completeness, quality_report
        )

    async def fail_iteration(
        self,
        job_id: str,
        iteration_number: int,
        error: EnhancedError | BaseException | str,
    ) -> ResearchJob:
        return await self.state.fail_iteration(job_id, iteration_number, error)

    async def cancel_job(self, job_id: str) -> ResearchJob:
        return await self.state.cancel_job(job_id)

    async def complete_job(self, job_id: str) -> ResearchJob:
        return await self.state.complete_job(job_id)

    async def fail_job(self, job_id: str, message: str) -> ResearchJob:
        return await self.state.fail_job(job_id, message)

    async def get_job(self, job_id: str) -> ResearchJob:
        return await self.state.get_job(job_id)

    async def list_jobs(
        self,
        user_id: str | None = None,
        status: JobStatus | None = None,
    ) -> list[ResearchJob]:
        return await self.state.list_jobs(user_id, status)

    async def run_iteration(
        self,
        job_id: str,
        endpoint_key: str,
        call: ProviderCall,
        timeout: float | None = None,
    ) -> Iteration:
        """Run one iteration end to end.

        Starts an iteration, calls the provider through the failure handler,
        scores the result, and records it. Provider failures complete the
        iteration with fallback data at low confidence; only failures that
        need manual intervention fail the iteration.

        The provider call should return a mapping with optional ``content``,
        ``summary``, ``findings`` (category lists or a flat list),
        ``confidence_score``, and ``data_completeness`` keys. Reported scores
        are clamped; a result the job still rejects fails the iteration.

        Raises:
            InvalidStateError: If the job is terminal, including when it was
                cancelled while the provider call was running (the iteration
                is then already closed as failed).
        """
        job = await self.state.get_job(job_id)
        number = await self.state.start_iteration(job_id)
        ctx = ErrorContext(
            job_id=job_id,
            job_type=job.job_type.value,
            company_name=job.company_name,
            iteration=number,
            user_id=job.user_id,
        )

        response = await self.failure_handler.execute_with_failure_handling(
            endpoint_key, call, ctx, timeout
        )
        if response.success:
            await self._record_provider_result(job, number, response, ctx)
        else:
            await self._record_fallback(job_id, number, response)

        job = await self.state.get_job(job_id)
        iteration = job.get_iteration(number)
        if iteration is None:
            raise IterationNotFoundError(job_id, number)
        return iteration

    async def _record_provider_result(
        self,
        job: ResearchJob,
        number: int,
        response: ApiResponse,
        ctx: ErrorContext,
    ) -> None:
        payload: Mapping[str, Any] = response.data if isinstance(response.data, Mapping) else {}
        try:
            findings = _findings_from_payload(job.job_type, payload)
        except (ValidationError, TypeError) as exc:
            error = self.classifier.classify(exc, ctx)
            fallback = self.fallback_generator.apply_intelligent_fallback(error, ctx)
            await self._complete_with_fallback(job.job_id, number, fallback)
            return

        report = self.validator.validate_data_quality(findings, ctx)
        confidence = _provider_score(
            payload.get("confidence_score"), 1.0, report.overall_score / 100
        )
        completeness = _provider_score(
            payload.get("data_completeness"), 100.0, report.dimensions.completeness
        )
        try:
            await self.state.complete_iteration(
                job.job_id, number, findings, confidence, completeness, report
            )
        except ValueError as exc:
            _logger.warning(
                "service.result_rejected", job_id=job.job_id, iteration=number, error=str(exc)
            )
            await self.state.fail_iteration(job.job_id, number, exc)

    async def _record_fallback(self, job_id: str, number: int, response: ApiResponse) -> None:
        fallback = response.fallback
        if fallback is None or not fallback.success:
            failure = response.error_details or response.error or "Provider call failed"
            await self.state.fail_iteration(job_id, number, failure)
            return
        await self._complete_with_fallback(job_id, number, fallback)

    async def _complete_with_fallback(
        self,
        job_id: str,
        number: int,
        fallback: FallbackResult,
    ) -> None:
        report = self.validator.validate_data_quality(fallback)
        await self.state.complete_iteration(
            job_id,
            number,
            {"content": fallback.content, "summary": fallback.summary},
            fallback.confidence_score,
            fallback.data_completeness,
            report,
        )
        _logger.info(
            "service.iteration_degraded",
            job_id=job_id,
            iteration=number,
            error_category=fallback.error_category.value if fallback.error_category else None,
        )

    # -------------------------------------------------------------------------
    # Consolidation
    # -------------------------------------------------------------------------

    async def consolidate(
        self,
        job_id: str,
        strategy: ConsolidationStrategy | str | None = None,
        force: bool = False,
    ) -> ConsolidatedAnalysis:
        return await self.consolidation.consolidate(job_id, strategy, force)

    async def get_consolidation_status(self, job_id: str) -> ConsolidationStatus:
        return await self.consolidation.get_consolidation_status(job_id)

    async def compare_iterations(
        self,
        job_id: str,
        iteration_a: int,
        iteration_b: int,
    ) -> IterationComparison:
        return await self.consolidation.compare_iterations(job_id, iteration_a, iteration_b)

    # -------------------------------------------------------------------------
    # Provider calls
    # -------------------------------------------------------------------------

    async def execute_with_failure_handling(
        self,
        endpoint_key: str,
        call: ProviderCall,
        context: ErrorContext | None = None,
        timeout: float | None = None,
    ) -> ApiResponse:
        return await self.failure_handler.execute_with_failure_handling(
            endpoint_key, call, context, timeout
        )

    def get_circuit_breaker_status(self) -> dict[str, dict[str, Any]]:
        return self.failure_handler.get_circuit_breaker_status()

    def reset_circuit_breaker(self, endpoint_key: str) -> dict[str, Any]:
        return self.failure_handler.reset_circuit_breaker(endpoint_key)

    async def perform_health_check(
        self,
        endpoint_keys: list[str] | None = None,
    ) -> dict[str, bool]:
        return await self.failure_handler.perform_health_check(endpoint_keys)

    def estimate_retry_success(
        self,
        category: ErrorCategory,
        history: list[RetryAttempt] | None = None,
    ) -> int:
        return estimate_success_rate(category, history)

    # -------------------------------------------------------------------------
    # Quality and presets
    # -------------------------------------------------------------------------

    def validate_data_quality(
        self,
        result: Any,
        ctx: ErrorContext | None = None,
    ) -> DataQualityReport:
        return self.validator.validate_data_quality(result, ctx)

    def quality_summary(self, report: DataQualityReport) -> str:
        return generate_quality_summary(report)

    @staticmethod
    def list_presets() -> list[ResearchPreset]:
        return list(RESEARCH_PRESETS)


__all__ = ["ResearchService"]
