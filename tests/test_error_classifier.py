"""Tests for diligence.core.errors classification."""

import httpx
import pytest

from diligence.core.errors import (
    CATEGORY_POLICIES,
    ErrorCategory,
    ErrorClassifier,
    ErrorContext,
    ErrorSeverity,
    FallbackStrategy,
    error_text,
    extract_retry_after,
    extract_status_code,
)


@pytest.fixture
def classifier() -> ErrorClassifier:
    return ErrorClassifier()


def _status_error(status: int, headers: dict | None = None) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://search.example.com/v1/query")
    response = httpx.Response(status, request=request, headers=headers or {})
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


class TestStatusCodeClassification:
    """A known status code decides the category outright."""

    @pytest.mark.parametrize(
        ("status", "category"),
        [
            (401, ErrorCategory.AUTHENTICATION),
            (403, ErrorCategory.AUTHENTICATION),
            (429, ErrorCategory.RATE_LIMIT),
            (408, ErrorCategory.TIMEOUT),
            (500, ErrorCategory.SERVER_ERROR),
            (503, ErrorCategory.SERVER_ERROR),
            (404, ErrorCategory.DATA_QUALITY),
            (422, ErrorCategory.DATA_QUALITY),
        ],
    )
    def test_status_codes(self, classifier, status, category):
        assert classifier.determine_category(status) == category

    def test_status_beats_message_text(self, classifier):
        error = classifier.classify({"status_code": 503, "message": "rate limit exceeded"})
        assert error.category == ErrorCategory.SERVER_ERROR
        assert error.status_code == 503

    def test_httpx_status_error(self, classifier):
        error = classifier.classify(_status_error(503, {"Retry-After": "12"}))

        assert error.category == ErrorCategory.SERVER_ERROR
        assert error.status_code == 503
        assert error.retry_after_seconds == 12.0


class TestKeywordClassification:
    """Keyword matching follows the fixed priority order."""

    @pytest.mark.parametrize(
        ("message", "category"),
        [
            ("401 Unauthorized: invalid api key", ErrorCategory.AUTHENTICATION),
            ("Too many requests", ErrorCategory.RATE_LIMIT),
            ("Request timed out", ErrorCategory.TIMEOUT),
            ("502 Bad Gateway", ErrorCategory.SERVER_ERROR),
            ("getaddrinfo ENOTFOUND search.example.com", ErrorCategory.NETWORK_ERROR),
            ("Malformed JSON payload", ErrorCategory.DATA_QUALITY),
            ("something odd happened", ErrorCategory.UNKNOWN),
        ],
    )
    def test_messages(self, classifier, message, category):
        assert classifier.determine_category(message) == category

    def test_authentication_beats_rate_limit(self, classifier):
        assert (
            classifier.determine_category("forbidden: quota exceeded")
            == ErrorCategory.AUTHENTICATION
        )

    def test_rate_limit_beats_timeout(self, classifier):
        assert (
            classifier.determine_category("rate limit hit, request timed out")
            == ErrorCategory.RATE_LIMIT
        )

    def test_timeout_beats_network(self, classifier):
        assert (
            classifier.determine_category("connection timeout")
            == ErrorCategory.TIMEOUT
        )


class TestExceptionTypes:
    """Exception types imply a category when the text says nothing."""

    def test_timeout_error(self, classifier):
        assert classifier.determine_category(TimeoutError()) == ErrorCategory.TIMEOUT

    def test_httpx_timeout(self, classifier):
        exc = httpx.ReadTimeout("read")
        assert classifier.determine_category(exc) == ErrorCategory.TIMEOUT

    def test_connection_error(self, classifier):
        exc = ConnectionResetError("reset by peer")
        assert classifier.determine_category(exc) == ErrorCategory.NETWORK_ERROR

    def test_value_error_is_data_quality(self, classifier):
        assert classifier.determine_category(ValueError("bad")) == ErrorCategory.DATA_QUALITY


class TestEnhancedError:
    """Tests for the classified record."""

    def test_policy_applied(self, classifier):
        error = classifier.classify("401 Unauthorized")

        assert error.severity == ErrorSeverity.HIGH
        assert not error.recoverable
        assert error.fallback_strategy == FallbackStrategy.MANUAL_INTERVENTION
        assert error.needs_manual_intervention

    def test_user_message_uses_context(self, classifier):
        ctx = ErrorContext(company_name="Acme Pvt Ltd", job_type="legal_research")
        error = classifier.classify("Request timed out", ctx)

        assert "Acme Pvt Ltd" in error.user_message
        assert "legal research" in error.user_message
        assert error.context["company_name"] == "Acme Pvt Ltd"

    def test_user_message_without_context(self, classifier):
        error = classifier.classify("Malformed JSON payload")
        assert "the company" in error.user_message

    def test_message_truncated(self, classifier):
        error = classifier.classify("x" * 500)
        assert len(error.message) == 200

    def test_cause_recorded(self, classifier):
        try:
            try:
                raise OSError("socket closed")
            except OSError as inner:
                raise RuntimeError("provider call failed") from inner
        except RuntimeError as exc:
            error = classifier.classify(exc)

        assert "socket closed" in error.technical_details["cause"]
        assert error.technical_details["error_type"] == "RuntimeError"

    def test_every_category_has_policy(self, classifier):
        for category in ErrorCategory:
            assert category in CATEGORY_POLICIES

    def test_circuit_open_error(self, classifier):
        error = classifier.classify_circuit_open("SEARCH_API")

        assert error.category == ErrorCategory.SERVER_ERROR
        assert not error.recoverable
        assert error.technical_details["circuit_breaker_triggered"] is True
        assert "SEARCH_API" in error.message

    def test_custom_patterns(self):
        classifier = ErrorClassifier(auth_patterns=[r"credentials expired"])
        assert (
            classifier.determine_category("credentials expired")
            == ErrorCategory.AUTHENTICATION
        )


class TestExtraction:
    """Tests for status, retry-after, and text extraction helpers."""

    def test_status_from_mapping(self):
        assert extract_status_code({"status": 429}) == 429
        assert extract_status_code({"status_code": "429"}) is None

    def test_status_ignores_bool(self):
        assert extract_status_code(True) is None

    def test_retry_after_from_text(self):
        assert extract_retry_after(RuntimeError("429: retry after 30")) == 30.0

    def test_retry_after_invalid(self):
        assert extract_retry_after({"headers": {"Retry-After": "soon"}}) is None

    def test_error_text_prefers_message_keys(self):
        assert error_text({"error": "quota exceeded", "status_code": 429}) == "quota exceeded"
        assert error_text({"status_code": 502}) == "HTTP 502"
        assert error_text(503) == "HTTP 503"

    def test_error_text_empty_exception(self):
        assert error_text(KeyError()) == "KeyError"
