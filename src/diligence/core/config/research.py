"""Research job, consolidation, and quality configuration models."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from diligence.core.constants import (
    DEFAULT_MAX_FAILED_ITERATIONS,
    DEFAULT_MAX_ITERATIONS,
    LOW_QUALITY_COMPLETENESS_THRESHOLD,
    QUALITY_PASS_THRESHOLD,
)


class JobDefaultsConfig(BaseModel):
    """Defaults applied to newly started research jobs."""

    max_iterations: int = Field(
        default=DEFAULT_MAX_ITERATIONS,
        ge=1,
        le=50,
        description="Expected iterations per job; progress is measured against it",
    )
    max_failed_iterations: int = Field(
        default=DEFAULT_MAX_FAILED_ITERATIONS,
        ge=1,
        description="Failed iterations (with none completed) before the job fails",
    )


class ConsolidationConfig(BaseModel):
    """Configuration for merging iterations into one analysis."""

    default_strategy: Literal["merge", "latest", "comprehensive"] = Field(
        default="comprehensive",
        description="Strategy used when a caller does not name one",
    )
    low_quality_threshold: float = Field(
        default=LOW_QUALITY_COMPLETENESS_THRESHOLD,
        ge=0,
        le=100,
        description=(
            "Completeness below which an iteration's unique findings are dropped "
            "by the comprehensive strategy"
        ),
    )


class QualityConfig(BaseModel):
    """Configuration for the data quality validator."""

    pass_threshold: float = Field(
        default=QUALITY_PASS_THRESHOLD,
        ge=0,
        le=100,
        description="Minimum overall score for validation_passed",
    )
    min_content_length: int = Field(
        default=100,
        ge=0,
        description="Content shorter than this is flagged as too brief",
    )
    min_source_attribution: float = Field(
        default=0.4,
        ge=0,
        le=1,
        description="Share of findings that must name a source",
    )
