"""Tests for diligence.execution.fallback module."""

import pytest
from pydantic import ValidationError

from diligence.core.errors import ErrorCategory, ErrorClassifier, ErrorContext
from diligence.core.models import VerificationLevel
from diligence.execution.fallback import FallbackGenerator, FallbackResult

classifier = ErrorClassifier()


@pytest.fixture
def generator() -> FallbackGenerator:
    return FallbackGenerator()


@pytest.fixture
def ctx() -> ErrorContext:
    return ErrorContext(
        job_id="job-1",
        job_type="legal_research",
        company_name="Acme Pvt Ltd",
        endpoint="SEARCH_API",
    )


class TestLimitedDataResponse:
    """Tests for generate_professional_limited_data_response()."""

    def test_shape(self, generator):
        result = generator.generate_professional_limited_data_response(
            "Acme Pvt Ltd", "legal_research"
        )

        assert result.success
        assert result.fallback_applied
        assert "Acme Pvt Ltd" in result.content
        assert "legal research" in result.content
        assert result.confidence_score == 0.3
        assert result.data_completeness == 10.0
        assert result.verification_level == VerificationLevel.LOW
        assert result.limitations
        assert result.recommendations

    def test_content_sections(self, generator):
        result = generator.generate_professional_limited_data_response(
            "Acme Pvt Ltd", "directors_research"
        )

        for heading in (
            "ANALYSIS METHODOLOGY:",
            "FINDINGS SUMMARY:",
            "PROFESSIONAL ASSESSMENT:",
            "RECOMMENDATIONS:",
        ):
            assert heading in result.content


class TestFallbackResult:
    """FallbackResult is always structurally valid."""

    def test_empty_content_rejected(self):
        with pytest.raises(ValidationError):
            FallbackResult(
                content="",
                summary="",
                confidence_score=0.3,
                data_completeness=10,
                methodology="m",
                limitations=["l"],
                recommendations=["r"],
            )

    def test_limitations_required(self):
        with pytest.raises(ValidationError):
            FallbackResult(
                content="c",
                summary="",
                confidence_score=0.3,
                data_completeness=10,
                methodology="m",
                limitations=[],
                recommendations=["r"],
            )


class TestApplyIntelligentFallback:
    """Tests for apply_intelligent_fallback()."""

    def test_server_error_gets_professional_fallback(self, generator, ctx):
        error = classifier.classify("503 Service Unavailable", ctx)
        result = generator.apply_intelligent_fallback(error, ctx)

        assert result.success
        assert result.error_category == ErrorCategory.SERVER_ERROR
        assert result.limitations[0] == error.user_message
        assert "Acme Pvt Ltd" in result.content
        assert result.recommendations[-1] == error.suggested_actions[0]

    def test_retry_count_noted(self, generator, ctx):
        error = classifier.classify("503 Service Unavailable", ctx)
        result = generator.apply_intelligent_fallback(error, ctx.with_retry_count(3))

        assert result.limitations[1] == "Provider remained unavailable after 3 retries"

    def test_single_retry_wording(self, generator, ctx):
        error = classifier.classify("Request timed out", ctx)
        result = generator.apply_intelligent_fallback(error, ctx.with_retry_count(1))

        assert result.limitations[1] == "Provider remained unavailable after 1 retry"

    def test_authentication_needs_manual_review(self, generator, ctx):
        error = classifier.classify("401 Unauthorized", ctx)
        result = generator.apply_intelligent_fallback(error, ctx)

        assert not result.success
        assert not result.error_handled
        assert result.confidence_score == 0.0
        assert result.data_completeness == 0.0
        assert "Manual review required for Acme Pvt Ltd" in result.content
        assert "Contact system administrator" in result.recommendations

    def test_context_recovered_from_error(self, generator, ctx):
        error = classifier.classify("Malformed JSON payload", ctx)
        result = generator.apply_intelligent_fallback(error)

        assert "Acme Pvt Ltd" in result.content
        assert result.error_category == ErrorCategory.DATA_QUALITY

    def test_unknown_company(self, generator):
        error = classifier.classify("something odd happened")
        result = generator.apply_intelligent_fallback(error)

        assert "Unknown Company" in result.content
        assert result.success
