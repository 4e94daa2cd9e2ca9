"""Data quality validation for research results.

Example usage:
    from diligence.validation import DataQualityValidator, generate_quality_summary

    report = DataQualityValidator().validate_data_quality(result)
    print(generate_quality_summary(report))
"""

from diligence.validation.quality import (
    DataQualityValidator,
    generate_quality_summary,
    score_source_reliability,
)

__all__ = [
    "DataQualityValidator",
    "generate_quality_summary",
    "score_source_reliability",
]
