"""Error classification and handling.

Re-exports all public symbols.
"""

from diligence.core.errors.codes import (
    CATEGORY_POLICIES,
    CLASSIFICATION_PRIORITY,
    CategoryPolicy,
    ErrorCategory,
    ErrorSeverity,
    FallbackStrategy,
)
from diligence.core.errors.models import EnhancedError, ErrorContext
from diligence.core.errors.classifier import (
    ErrorClassifier,
    error_text,
    extract_retry_after,
    extract_status_code,
    suggested_actions_for,
    user_message_for,
)

__all__ = [
    "CATEGORY_POLICIES",
    "CLASSIFICATION_PRIORITY",
    "CategoryPolicy",
    "EnhancedError",
    "ErrorCategory",
    "ErrorClassifier",
    "ErrorContext",
    "ErrorSeverity",
    "FallbackStrategy",
    "error_text",
    "extract_retry_after",
    "extract_status_code",
    "suggested_actions_for",
    "user_message_for",
]
