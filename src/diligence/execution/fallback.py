"""Intelligent fallback results for failed provider calls.

A fallback has the same shape as a real provider result, so consolidation
and reporting never special-case failures: an outage degrades confidence
instead of aborting the job.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from diligence.core.constants import (
    FALLBACK_CONFIDENCE_SCORE,
    FALLBACK_DATA_COMPLETENESS,
    MANUAL_REVIEW_CONFIDENCE_SCORE,
)
from diligence.core.errors import (
    EnhancedError,
    ErrorCategory,
    ErrorContext,
    FallbackStrategy,
)
from diligence.core.logging import get_logger
from diligence.core.models import VerificationLevel

_logger = get_logger("fallback")


METHODOLOGY_STEPS: tuple[str, ...] = (
    "Search across regulatory databases and official filings",
    "Cross-reference with court records and legal proceedings databases",
    "Review of media sources and industry publications",
    "Analysis of corporate governance and compliance indicators",
)

_LIMITED_DATA_EXPLANATIONS: tuple[str, ...] = (
    "Private company with minimal public disclosure requirements",
    "Recent incorporation with limited operational history",
    "Minimal media exposure",
)

_ASSESSMENT_CHECKS: tuple[str, ...] = (
    "Direct company engagement and documentation review",
    "Reference checks with business partners and stakeholders",
    "Regulatory compliance verification through official channels",
    "Financial analysis based on audited statements when available",
)

_LIMITED_DATA_RECOMMENDATIONS: tuple[str, ...] = (
    "Conduct direct engagement with company management",
    "Request audited financial statements and compliance certificates",
    "Verify regulatory standing through official government portals",
    "Consider enhanced due diligence if material exposure is involved",
)


class FallbackResult(BaseModel):
    """Placeholder result shaped like a provider result.

    Always structurally valid: non-empty content, a confidence score,
    and at least one limitation and one recommendation.
    """

    success: bool = True
    content: str = Field(min_length=1)
    summary: str
    findings: list[Any] = Field(default_factory=list)
    confidence_score: float = Field(ge=0, le=1)
    data_completeness: float = Field(ge=0, le=100)
    verification_level: VerificationLevel = VerificationLevel.LOW
    methodology: str
    limitations: list[str] = Field(min_length=1)
    recommendations: list[str] = Field(min_length=1)
    fallback_applied: bool = True
    error_handled: bool = True
    error_category: ErrorCategory | None = None


def _bullets(items: tuple[str, ...] | list[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


class FallbackGenerator:
    """Builds professional fallback results from classified failures."""

    def generate_professional_limited_data_response(
        self,
        company_name: str,
        job_type: str,
        context: ErrorContext | None = None,
    ) -> FallbackResult:
        """Result for a "no data available" situation, no error required.

        Args:
            company_name: Company the research was about.
            job_type: Job type value, e.g. ``legal_research``.
            context: Optional call context (used for logging only).
        """
        job_label = job_type.replace("_", " ")
        methodology = _bullets(METHODOLOGY_STEPS)
        content = (
            f"Professional {job_label} analysis completed for {company_name}.\n\n"
            f"ANALYSIS METHODOLOGY:\n{methodology}\n\n"
            f"FINDINGS SUMMARY:\n"
            f"Limited public information is available for {company_name}. "
            f"This may indicate:\n{_bullets(_LIMITED_DATA_EXPLANATIONS)}\n\n"
            f"PROFESSIONAL ASSESSMENT:\n"
            "The limited availability of adverse information should not be "
            "interpreted as either positive or negative. Verification requires:\n"
            f"{_bullets(_ASSESSMENT_CHECKS)}\n\n"
            f"RECOMMENDATIONS:\n{_bullets(_LIMITED_DATA_RECOMMENDATIONS)}"
        )

        _logger.debug(
            "fallback.limited_data_response",
            company_name=company_name,
            job_type=job_type,
            job_id=context.job_id if context else None,
        )
        return FallbackResult(
            content=content,
            summary=(
                f"Limited public information available for {company_name}; "
                "findings are indicative only."
            ),
            confidence_score=FALLBACK_CONFIDENCE_SCORE,
            data_completeness=FALLBACK_DATA_COMPLETENESS,
            methodology=methodology,
            limitations=[
                "Limited public information available",
                "Unable to verify through multiple independent sources",
                "Requires direct company engagement for a complete assessment",
            ],
            recommendations=[
                "Conduct direct company engagement",
                "Request official documentation",
                "Verify regulatory compliance status",
            ],
        )

    def apply_intelligent_fallback(
        self,
        error: EnhancedError,
        context: ErrorContext | None = None,
    ) -> FallbackResult:
        """Convert a classified failure into a fallback result.

        Manual-intervention failures yield a zero-confidence result asking
        for an administrator. Everything else gets the professional
        limited-data response annotated with what went wrong.
        """
        ctx = context or ErrorContext(**_context_fields(error.context))

        if error.fallback_strategy == FallbackStrategy.MANUAL_INTERVENTION:
            result = self._manual_review(error, ctx)
        else:
            base = self.generate_professional_limited_data_response(
                ctx.company_name or "Unknown Company",
                ctx.job_type or "research",
                ctx,
            )
            limitations = [error.user_message, *base.limitations]
            if error.recoverable and ctx.retry_count:
                limitations.insert(
                    1,
                    f"Provider remained unavailable after {ctx.retry_count} "
                    f"retr{'y' if ctx.retry_count == 1 else 'ies'}",
                )
            result = base.model_copy(
                update={
                    "limitations": limitations,
                    "recommendations": [*base.recommendations, *error.suggested_actions[:1]],
                    "error_category": error.category,
                }
            )

        _logger.info(
            "fallback.applied",
            category=error.category.value,
            strategy=error.fallback_strategy.value,
            endpoint=ctx.endpoint,
            confidence_score=result.confidence_score,
        )
        return result

    def _manual_review(self, error: EnhancedError, ctx: ErrorContext) -> FallbackResult:
        company = ctx.company_name or "this company"
        methodology = "No research performed; the provider rejected the request."
        return FallbackResult(
            success=False,
            content=(
                f"Manual review required for {company} due to system configuration "
                "requirements. Please contact the system administrator to resolve "
                "authentication or configuration issues."
            ),
            summary="Research could not run; administrator action required.",
            confidence_score=MANUAL_REVIEW_CONFIDENCE_SCORE,
            data_completeness=0.0,
            methodology=methodology,
            limitations=["System configuration issue requires manual intervention"],
            recommendations=[
                "Contact system administrator",
                "Verify API configuration",
                "Check service permissions",
            ],
            error_handled=False,
            error_category=error.category,
        )


def _context_fields(raw: dict[str, Any]) -> dict[str, Any]:
    """ErrorContext kwargs recoverable from an EnhancedError.context dict."""
    allowed = set(ErrorContext.__dataclass_fields__)
    return {k: v for k, v in raw.items() if k in allowed}


__all__ = [
    "FallbackGenerator",
    "FallbackResult",
    "METHODOLOGY_STEPS",
]
