"""ErrorClassifier implementation for keyword and status-code classification.

Turns any raw provider failure (an exception, an HTTP status code, a
response-like object, or plain text) into an EnhancedError carrying a
category, severity, fallback strategy, and user-safe messaging.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

import httpx

from diligence.core.constants import TRUNCATE_ERROR_MESSAGE_CHARS
from diligence.core.logging import get_logger

from .codes import (
    CATEGORY_POLICIES,
    CLASSIFICATION_PRIORITY,
    ErrorCategory,
)
from .models import EnhancedError, ErrorContext

# Module-level logger for error classification
_logger = get_logger("errors")


# =============================================================================
# Default pattern strings for ErrorClassifier.
# =============================================================================

_DEFAULT_AUTH_PATTERNS: list[str] = [
    r"unauthori[sz]ed",
    r"authentication",
    r"invalid.?api.?key",
    r"forbidden",
    r"access.?denied",
    r"\b401\b",
    r"\b403\b",
]

_DEFAULT_RATE_LIMIT_PATTERNS: list[str] = [
    r"rate.?limit",
    r"too many requests",
    r"quota",
    r"\b429\b",
]

_DEFAULT_TIMEOUT_PATTERNS: list[str] = [
    r"timeout",
    r"timed out",
    r"deadline exceeded",
    r"\b408\b",
]

_DEFAULT_SERVER_ERROR_PATTERNS: list[str] = [
    r"\b50[0-4]\b",
    r"internal server error",
    r"bad gateway",
    r"service unavailable",
]

_DEFAULT_NETWORK_PATTERNS: list[str] = [
    r"network",
    r"connection",
    r"\bfetch\b",
    r"ECONNRESET",
    r"ECONNREFUSED",
    r"ENOTFOUND",
    r"getaddrinfo",
    r"name.?resolution",
]

_DEFAULT_DATA_QUALITY_PATTERNS: list[str] = [
    r"\bparse\b",
    r"parsing",
    r"malformed",
    r"\binvalid\b",
    r"\bformat\b",
    r"\bdata\b",
    r"decode",
    r"unexpected token",
]

_RETRY_AFTER_RE = re.compile(r"retry.?after[:=\s]+(\d+(?:\.\d+)?)", re.IGNORECASE)


def _compile_patterns(strings: list[str]) -> list[re.Pattern[str]]:
    """Compile a list of regex strings into case-insensitive Pattern objects."""
    return [re.compile(p, re.IGNORECASE) for p in strings]


def _status_category(status_code: int) -> ErrorCategory | None:
    """Map an HTTP status code to a category, if it determines one."""
    if status_code in (401, 403):
        return ErrorCategory.AUTHENTICATION
    if status_code == 429:
        return ErrorCategory.RATE_LIMIT
    if status_code == 408:
        return ErrorCategory.TIMEOUT
    if 500 <= status_code <= 599:
        return ErrorCategory.SERVER_ERROR
    if status_code in (400, 404, 413, 422):
        return ErrorCategory.DATA_QUALITY
    return None


def _response_of(raw_error: Any) -> Any:
    """Return the response object attached to an HTTP error, if any."""
    if isinstance(raw_error, httpx.HTTPStatusError):
        return raw_error.response
    return getattr(raw_error, "response", None)


def extract_status_code(raw_error: Any) -> int | None:
    """Pull an HTTP status code out of whatever the provider call produced.

    Accepts a bare int, a mapping with ``status_code``/``status``, or an
    object (exception or response) exposing ``status_code`` directly or on
    an attached ``response``.
    """
    if isinstance(raw_error, bool):
        return None
    if isinstance(raw_error, int):
        return raw_error
    if isinstance(raw_error, Mapping):
        value = raw_error.get("status_code", raw_error.get("status"))
        return value if isinstance(value, int) else None
    for candidate in (raw_error, _response_of(raw_error)):
        value = getattr(candidate, "status_code", None)
        if isinstance(value, int):
            return value
    return None


def extract_retry_after(raw_error: Any) -> float | None:
    """Pull a Retry-After hint (in seconds) from headers or error text."""
    headers: Any = None
    if isinstance(raw_error, Mapping):
        headers = raw_error.get("headers")
    else:
        headers = getattr(raw_error, "headers", None)
        if headers is None:
            headers = getattr(_response_of(raw_error), "headers", None)

    value: Any = None
    if headers is not None:
        try:
            value = headers.get("retry-after") or headers.get("Retry-After")
        except AttributeError:
            value = None
    if value is None and isinstance(raw_error, (str, BaseException)):
        match = _RETRY_AFTER_RE.search(str(raw_error))
        if match:
            value = match.group(1)
    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


def error_text(raw_error: Any) -> str:
    """Render a raw failure as text for pattern matching."""
    if isinstance(raw_error, BaseException):
        message = str(raw_error)
        return message or type(raw_error).__name__
    if isinstance(raw_error, Mapping):
        for key in ("error", "message", "detail", "text"):
            value = raw_error.get(key)
            if value:
                return str(value)
        status = extract_status_code(raw_error)
        return f"HTTP {status}" if status is not None else str(dict(raw_error))
    if isinstance(raw_error, int) and not isinstance(raw_error, bool):
        return f"HTTP {raw_error}"
    text = getattr(raw_error, "text", None)
    if isinstance(text, str) and text:
        return text
    return str(raw_error)


# =============================================================================
# Error Classifier
# =============================================================================


class ErrorClassifier:
    """Classifies provider failures by status code, exception type, and keywords.

    Categories are tested in a fixed priority order (authentication,
    rate limit, timeout, server error, network, data quality); the first
    one that matches wins and anything else is UNKNOWN.
    """

    def __init__(
        self,
        auth_patterns: list[str] | None = None,
        rate_limit_patterns: list[str] | None = None,
        timeout_patterns: list[str] | None = None,
        network_patterns: list[str] | None = None,
    ):
        """Initialize classifier with detection patterns.

        Args:
            auth_patterns: Regex patterns indicating credential failures
            rate_limit_patterns: Regex patterns indicating throttling
            timeout_patterns: Regex patterns indicating timeouts
            network_patterns: Regex patterns indicating connectivity issues
        """
        self._patterns: dict[ErrorCategory, list[re.Pattern[str]]] = {
            ErrorCategory.AUTHENTICATION: _compile_patterns(
                auth_patterns or _DEFAULT_AUTH_PATTERNS
            ),
            ErrorCategory.RATE_LIMIT: _compile_patterns(
                rate_limit_patterns or _DEFAULT_RATE_LIMIT_PATTERNS
            ),
            ErrorCategory.TIMEOUT: _compile_patterns(
                timeout_patterns or _DEFAULT_TIMEOUT_PATTERNS
            ),
            ErrorCategory.SERVER_ERROR: _compile_patterns(_DEFAULT_SERVER_ERROR_PATTERNS),
            ErrorCategory.NETWORK_ERROR: _compile_patterns(
                network_patterns or _DEFAULT_NETWORK_PATTERNS
            ),
            ErrorCategory.DATA_QUALITY: _compile_patterns(_DEFAULT_DATA_QUALITY_PATTERNS),
        }

    def _matches_any(self, text: str, category: ErrorCategory) -> bool:
        return any(p.search(text) for p in self._patterns[category])

    def _type_category(self, raw_error: Any) -> ErrorCategory | None:
        """Category implied by the exception type alone."""
        if isinstance(raw_error, (TimeoutError, httpx.TimeoutException)):
            return ErrorCategory.TIMEOUT
        if isinstance(raw_error, (ConnectionError, httpx.NetworkError)):
            return ErrorCategory.NETWORK_ERROR
        if isinstance(raw_error, (ValueError, KeyError)):
            return ErrorCategory.DATA_QUALITY
        return None

    def determine_category(self, raw_error: Any) -> ErrorCategory:
        """Determine the error category for a raw failure.

        A known HTTP status code decides the category outright. Otherwise
        each category is checked in priority order against the exception
        type and the failure text.
        """
        status_code = extract_status_code(raw_error)
        if status_code is not None:
            from_status = _status_category(status_code)
            if from_status is not None:
                return from_status

        text = error_text(raw_error)
        type_category = self._type_category(raw_error)
        for category in CLASSIFICATION_PRIORITY:
            if type_category == category or self._matches_any(text, category):
                return category
        return ErrorCategory.UNKNOWN

    def classify(
        self,
        raw_error: Any,
        context: ErrorContext | None = None,
    ) -> EnhancedError:
        """Classify a raw failure into an EnhancedError.

        Args:
            raw_error: Exception, status code, response-like object, or text.
            context: Where the failure happened; used to template messages.

        Returns:
            EnhancedError with category, policy, and user-facing messaging.
        """
        ctx = context or ErrorContext()
        category = self.determine_category(raw_error)
        policy = CATEGORY_POLICIES[category]
        message = error_text(raw_error)[:TRUNCATE_ERROR_MESSAGE_CHARS]

        technical_details: dict[str, Any] = {
            "error_type": type(raw_error).__name__,
        }
        if isinstance(raw_error, BaseException) and raw_error.__cause__ is not None:
            technical_details["cause"] = repr(raw_error.__cause__)

        enhanced = EnhancedError(
            category=category,
            severity=policy.severity,
            recoverable=policy.recoverable,
            fallback_strategy=policy.strategy,
            message=message,
            user_message=user_message_for(category, ctx),
            suggested_actions=suggested_actions_for(category, ctx),
            status_code=extract_status_code(raw_error),
            retry_after_seconds=extract_retry_after(raw_error),
            context=ctx.to_dict(),
            technical_details=technical_details,
        )

        _logger.debug(
            "errors.classified",
            category=category.value,
            severity=policy.severity.value,
            recoverable=policy.recoverable,
            status_code=enhanced.status_code,
            endpoint=ctx.endpoint,
            message=message,
        )
        return enhanced

    def classify_circuit_open(
        self,
        endpoint: str,
        context: ErrorContext | None = None,
    ) -> EnhancedError:
        """EnhancedError for a call short-circuited by an open breaker."""
        ctx = context or ErrorContext(endpoint=endpoint)
        policy = CATEGORY_POLICIES[ErrorCategory.SERVER_ERROR]
        return EnhancedError(
            category=ErrorCategory.SERVER_ERROR,
            severity=policy.severity,
            recoverable=False,
            fallback_strategy=policy.strategy,
            message=f"{endpoint} service temporarily unavailable (circuit open)",
            user_message=user_message_for(ErrorCategory.SERVER_ERROR, ctx),
            suggested_actions=suggested_actions_for(ErrorCategory.SERVER_ERROR, ctx),
            context=ctx.to_dict(),
            technical_details={"circuit_breaker_triggered": True},
        )


def user_message_for(category: ErrorCategory, ctx: ErrorContext) -> str:
    """User-safe explanation of a failure, templated with company and job type."""
    company = ctx.company_label
    job_type = ctx.job_type_label
    if category == ErrorCategory.RATE_LIMIT:
        return (
            f"Research processing for {company} is temporarily delayed due to high "
            "system demand. The analysis will continue automatically."
        )
    if category == ErrorCategory.TIMEOUT:
        return (
            f"Comprehensive {job_type} analysis for {company} is taking longer than "
            "expected due to the extensive scope of research. Processing continues "
            "in the background."
        )
    if category == ErrorCategory.SERVER_ERROR:
        return (
            "External research services are temporarily unavailable. A professional "
            f"analysis framework has been applied for {company} using available data "
            "sources."
        )
    if category == ErrorCategory.NETWORK_ERROR:
        return (
            "Network connectivity issues are affecting research services. The system "
            f"will automatically retry the analysis for {company}."
        )
    if category == ErrorCategory.AUTHENTICATION:
        return (
            "Research service authentication requires attention. Please contact the "
            "system administrator to restore access to comprehensive analysis."
        )
    if category == ErrorCategory.DATA_QUALITY:
        return (
            f"Limited public information is available for {company}. This may "
            "indicate a private company with minimal public exposure or recent "
            "incorporation."
        )
    return (
        f"A professional {job_type} analysis framework has been applied for "
        f"{company}. Enhanced research capabilities may require configuration updates."
    )


def suggested_actions_for(category: ErrorCategory, ctx: ErrorContext) -> list[str]:
    """Operator-facing next steps for a failure category."""
    if category == ErrorCategory.RATE_LIMIT:
        return [
            "Wait for automatic retry with exponential backoff",
            "Consider upgrading the API tier for higher rate limits",
            "Review research scope to reduce API usage",
        ]
    if category == ErrorCategory.TIMEOUT:
        return [
            "Allow additional time for comprehensive research completion",
            f"Consider reducing the {ctx.job_type_label} scope for faster processing",
            "Check system resources and network connectivity",
        ]
    if category == ErrorCategory.SERVER_ERROR:
        return [
            "Verify provider service status",
            "Review endpoint configuration",
            "Consider alternative research methods",
        ]
    if category == ErrorCategory.NETWORK_ERROR:
        return [
            "Check network connectivity to the provider",
            "Verify DNS resolution for the endpoint",
        ]
    if category == ErrorCategory.AUTHENTICATION:
        return [
            "Verify API key configuration",
            "Check service account permissions",
            "Contact system administrator",
        ]
    if category == ErrorCategory.DATA_QUALITY:
        return [
            f"Verify the company information for {ctx.company_label}",
            "Cross-reference with alternative data sources",
            "Consider manual data entry for missing information",
        ]
    return [
        "Review system logs for detailed error information",
        "Contact technical support if the issue persists",
        "Consider manual review of research results",
    ]
