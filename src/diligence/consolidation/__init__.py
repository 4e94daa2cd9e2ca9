"""Consolidation of completed iterations into one analysis."""

from diligence.consolidation.engine import (
    ConsolidationEngine,
    assess_risk,
    build_consolidated_analysis,
    calculate_agreement_bonus,
    calculate_overall_confidence,
    calculate_overall_data_completeness,
    merge_iteration_findings,
    normalize_finding_key,
    verification_level_for,
)

__all__ = [
    "ConsolidationEngine",
    "assess_risk",
    "build_consolidated_analysis",
    "calculate_agreement_bonus",
    "calculate_overall_confidence",
    "calculate_overall_data_completeness",
    "merge_iteration_findings",
    "normalize_finding_key",
    "verification_level_for",
]
