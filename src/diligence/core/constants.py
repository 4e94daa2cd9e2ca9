"""Global constants for diligence.

Centralizes magic numbers used throughout the codebase,
making them discoverable, consistent, and easy to modify.
"""

# =============================================================================
# Job / Iteration Defaults
# =============================================================================

DEFAULT_MAX_ITERATIONS = 3
"""Expected number of iterations for a research job."""

DEFAULT_MAX_FAILED_ITERATIONS = 3
"""Failed iterations (with zero completed) that exhaust a job."""

RUNNING_PROGRESS_CEILING = 99
"""Highest progress a job can report before it reaches COMPLETED."""

MIN_ITERATIONS_FOR_CONSOLIDATION = 2
"""Completed iterations needed before consolidation may run."""

# =============================================================================
# Consolidation Scoring
# =============================================================================

HIGH_VERIFICATION_THRESHOLD = 0.8
"""Consolidated confidence strictly above this is verification 'high'."""

MEDIUM_VERIFICATION_THRESHOLD = 0.6
"""Consolidated confidence strictly above this is verification 'medium'."""

AGREEMENT_BONUS_PER_FINDING = 0.05
"""Confidence bonus per corroborated high/critical finding."""

AGREEMENT_BONUS_CAP = 0.1
"""Maximum total agreement bonus applied to consolidated confidence."""

LOW_QUALITY_COMPLETENESS_THRESHOLD = 40.0
"""Iterations with completeness below this are treated as low quality."""

# =============================================================================
# Data Quality
# =============================================================================

QUALITY_PASS_THRESHOLD = 40.0
"""Minimum overall quality score for validation_passed."""

VERIFIED_SCORE_THRESHOLD = 85.0
"""Overall score at or above which a result counts as verified."""

PARTIALLY_VERIFIED_SCORE_THRESHOLD = 60.0
"""Overall score at or above which a result counts as partially verified."""

# =============================================================================
# Fallback Results
# =============================================================================

FALLBACK_CONFIDENCE_SCORE = 0.3
"""Confidence assigned to professional fallback results."""

FALLBACK_DATA_COMPLETENESS = 10.0
"""Data completeness assigned to professional fallback results."""

MANUAL_REVIEW_CONFIDENCE_SCORE = 0.0
"""Confidence assigned when the failure needs manual intervention."""

# =============================================================================
# Provider Calls
# =============================================================================

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
"""HTTP status codes that are worth retrying."""

HEALTH_CHECK_TIMEOUT_SECONDS = 5.0
"""Timeout for a single endpoint health probe."""

TRUNCATE_ERROR_MESSAGE_CHARS = 200
"""Maximum characters for error message summaries."""
