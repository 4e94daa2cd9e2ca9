"""Core domain models, configuration, errors, and logging."""

from diligence.core.config import DiligenceConfig
from diligence.core.errors import EnhancedError, ErrorCategory, ErrorClassifier, ErrorContext
from diligence.core.models import (
    ConsolidatedAnalysis,
    DataQualityReport,
    Iteration,
    JobStatus,
    JobType,
    ResearchJob,
    StructuredFinding,
)

__all__ = [
    "ConsolidatedAnalysis",
    "DataQualityReport",
    "DiligenceConfig",
    "EnhancedError",
    "ErrorCategory",
    "ErrorClassifier",
    "ErrorContext",
    "Iteration",
    "JobStatus",
    "JobType",
    "ResearchJob",
    "StructuredFinding",
]
