"""Data models for error classification.

This module provides:
- ErrorContext: Where a failure happened (job, company, endpoint, attempt)
- EnhancedError: A classified, user-safe failure record
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .codes import ErrorCategory, ErrorSeverity, FallbackStrategy


@dataclass(frozen=True)
class ErrorContext:
    """Context describing the call that failed.

    Used to template user messages and fallback content, and carried
    verbatim into EnhancedError.context for diagnostics.
    """

    job_id: str | None = None
    job_type: str | None = None
    company_name: str | None = None
    iteration: int | None = None
    user_id: str | None = None
    endpoint: str | None = None
    request_id: str | None = None
    retry_count: int = 0
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    @property
    def company_label(self) -> str:
        """Company name for user-facing text."""
        return self.company_name or "the company"

    @property
    def job_type_label(self) -> str:
        """Job type for user-facing text, e.g. ``legal research``."""
        return self.job_type.replace("_", " ") if self.job_type else "research"

    def with_endpoint(self, endpoint: str) -> ErrorContext:
        return replace(self, endpoint=endpoint)

    def with_retry_count(self, retry_count: int) -> ErrorContext:
        return replace(self, retry_count=retry_count)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary, dropping unset fields."""
        return {k: v for k, v in asdict(self).items() if v is not None}


class EnhancedError(BaseModel):
    """A provider failure after classification.

    Immutable: re-classification produces a new record.
    """

    model_config = ConfigDict(frozen=True)

    category: ErrorCategory
    severity: ErrorSeverity
    recoverable: bool
    fallback_strategy: FallbackStrategy
    message: str = Field(description="Raw failure text, truncated")
    user_message: str = Field(description="Safe, templated text for end users")
    suggested_actions: list[str] = Field(default_factory=list)
    status_code: int | None = Field(default=None, description="HTTP status, when known")
    retry_after_seconds: float | None = Field(
        default=None, description="Provider's Retry-After hint, when given"
    )
    context: dict[str, Any] = Field(default_factory=dict)
    technical_details: dict[str, Any] = Field(default_factory=dict)

    @property
    def needs_manual_intervention(self) -> bool:
        return self.fallback_strategy == FallbackStrategy.MANUAL_INTERVENTION
