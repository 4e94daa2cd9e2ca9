"""Findings consolidation across completed iterations.

Merges the findings of several completed iterations into one
ConsolidatedAnalysis, scores its confidence and completeness, and writes
it back onto the job.

Strategies (per entity category):
- latest: the most recent iteration that reported anything
- merge: union of findings, normalised duplicates collapsed
- comprehensive: merge, keep the better verified version of a duplicate,
  and drop items that only low-completeness iterations reported (unless
  nothing better exists for that category)

The scoring and merge helpers are public pure functions so that
administrative tooling can call them without running a consolidation.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from diligence.core.config import ConsolidationConfig
from diligence.core.constants import (
    AGREEMENT_BONUS_CAP,
    AGREEMENT_BONUS_PER_FINDING,
    HIGH_VERIFICATION_THRESHOLD,
    LOW_QUALITY_COMPLETENESS_THRESHOLD,
    MEDIUM_VERIFICATION_THRESHOLD,
    MIN_ITERATIONS_FOR_CONSOLIDATION,
)
from diligence.core.exceptions import (
    AlreadyExistsError,
    ConsolidationConflictError,
    InsufficientDataError,
    InvalidStateError,
    IterationNotFoundError,
)
from diligence.core.logging import get_logger
from diligence.core.models import (
    CategoryAnalysis,
    ConsolidatedAnalysis,
    ConsolidatedFinding,
    ConsolidationStatus,
    ConsolidationStrategy,
    EntityCategory,
    Iteration,
    IterationComparison,
    IterationStatus,
    RiskAssessment,
    RiskLevel,
    StructuredFinding,
    VerificationLevel,
)
from diligence.state.machine import JobStateMachine

_logger = get_logger("consolidation")


# =============================================================================
# Risk indicators
# =============================================================================

HIGH_RISK_INDICATORS: tuple[str, ...] = (
    "criminal charges",
    "arrested",
    "convicted",
    "fraud",
    "embezzlement",
    "bankruptcy",
    "insolvent",
    "debarred",
    "license suspended",
    "sebi penalty",
)

MEDIUM_RISK_INDICATORS: tuple[str, ...] = (
    "dispute",
    "complaint",
    "delay",
    "quality issue",
    "penalty",
    "investigation",
    "allegation",
    "default",
    "irregularity",
)

_RISK_RECOMMENDATIONS: dict[RiskLevel, tuple[str, ...]] = {
    RiskLevel.HIGH: (
        "HIGH RISK: Recommend declining or postponing this business relationship",
        "Conduct enhanced legal and compliance verification",
        "Seek legal counsel before any business engagement",
        "Require additional guarantees and safeguards if proceeding",
    ),
    RiskLevel.MEDIUM: (
        "MEDIUM RISK: Proceed with enhanced monitoring and safeguards",
        "Implement additional compliance checks and documentation",
        "Schedule regular review of business relationship",
    ),
    RiskLevel.LOW: (
        "LOW RISK: Standard due diligence measures sufficient",
        "Continue periodic monitoring as per regular procedures",
    ),
}

_STANDING_RECOMMENDATIONS: tuple[str, ...] = (
    "Document all findings and business decisions",
    "Plan periodic re-assessment of risk factors",
)


# =============================================================================
# Pure helpers
# =============================================================================


def normalize_finding_key(finding: StructuredFinding) -> str:
    """Dedupe key for a finding (normalised title and description)."""
    return finding.normalized_key()


def _ordered(iterations: Iterable[Iteration]) -> list[Iteration]:
    return sorted(iterations, key=lambda i: i.iteration_number)


def _category_items(iteration: Iteration) -> dict[EntityCategory, list[StructuredFinding]]:
    if iteration.findings is None:
        return {}
    result: dict[EntityCategory, list[StructuredFinding]] = iteration.findings.by_category()
    return result


def _union(first: Sequence[str], second: Sequence[str]) -> list[str]:
    return list(dict.fromkeys([*first, *second]))


def _is_better(candidate: StructuredFinding, current: StructuredFinding) -> bool:
    """Higher verification wins; ties go to the more severe version."""
    if candidate.verification_level.rank != current.verification_level.rank:
        return candidate.verification_level.rank > current.verification_level.rank
    return candidate.severity.rank > current.severity.rank


def _absorb(
    merged: dict[str, ConsolidatedFinding],
    finding: StructuredFinding,
    iteration_number: int,
    prefer_verified: bool,
) -> None:
    key = normalize_finding_key(finding)
    existing = merged.get(key)
    if existing is None:
        data = finding.model_dump()
        data["reported_in"] = [iteration_number]
        merged[key] = ConsolidatedFinding(**data)
        return

    citations = _union(existing.citations, finding.citations)
    reported_in = sorted({*existing.reported_in, iteration_number})
    if prefer_verified and _is_better(finding, existing):
        data = finding.model_dump()
        data.update(
            citations=citations,
            reported_in=reported_in,
            source=finding.source or existing.source,
        )
        merged[key] = ConsolidatedFinding(**data)
    else:
        merged[key] = existing.model_copy(
            update={
                "citations": citations,
                "reported_in": reported_in,
                "source": existing.source or finding.source,
            }
        )


def _category_analysis(
    category: EntityCategory,
    findings: list[ConsolidatedFinding],
    dropped: int = 0,
) -> CategoryAnalysis:
    iterations = sorted({n for f in findings for n in f.reported_in})
    sources = list(dict.fromkeys(f.source for f in findings if f.source))
    return CategoryAnalysis(
        category=category,
        findings=findings,
        source_iterations=iterations,
        sources=sources,
        dropped_low_quality=dropped,
    )


def _latest(category: EntityCategory, iterations: list[Iteration]) -> CategoryAnalysis:
    for iteration in reversed(iterations):
        items = _category_items(iteration).get(category) or []
        if items:
            merged: dict[str, ConsolidatedFinding] = {}
            for finding in items:
                _absorb(merged, finding, iteration.iteration_number, prefer_verified=False)
            return _category_analysis(category, list(merged.values()))
    return _category_analysis(category, [])


def _merged(
    category: EntityCategory,
    iterations: list[Iteration],
    prefer_verified: bool,
) -> dict[str, ConsolidatedFinding]:
    merged: dict[str, ConsolidatedFinding] = {}
    for iteration in iterations:
        for finding in _category_items(iteration).get(category) or []:
            _absorb(merged, finding, iteration.iteration_number, prefer_verified)
    return merged


def _comprehensive(
    category: EntityCategory,
    iterations: list[Iteration],
    low_quality_threshold: float,
) -> CategoryAnalysis:
    merged = list(_merged(category, iterations, prefer_verified=True).values())
    low_quality = {
        i.iteration_number
        for i in iterations
        if i.data_completeness_score < low_quality_threshold
    }
    kept = [f for f in merged if not set(f.reported_in) <= low_quality]
    if not kept:
        # Nothing better exists for this category, keep what we have
        return _category_analysis(category, merged)
    return _category_analysis(category, kept, dropped=len(merged) - len(kept))


def merge_iteration_findings(
    iterations: Sequence[Iteration],
    strategy: ConsolidationStrategy = ConsolidationStrategy.COMPREHENSIVE,
    low_quality_threshold: float = LOW_QUALITY_COMPLETENESS_THRESHOLD,
) -> dict[EntityCategory, CategoryAnalysis]:
    """Merge iteration findings into one CategoryAnalysis per category.

    Args:
        iterations: Completed iterations, in any order.
        strategy: latest, merge, or comprehensive.
        low_quality_threshold: Completeness below which an iteration's
            unique findings are dropped (comprehensive only).

    Returns:
        Every EntityCategory mapped to its analysis (possibly empty).
    """
    ordered = _ordered(iterations)
    result: dict[EntityCategory, CategoryAnalysis] = {}
    for category in EntityCategory:
        if strategy == ConsolidationStrategy.LATEST:
            result[category] = _latest(category, ordered)
        elif strategy == ConsolidationStrategy.MERGE:
            merged = _merged(category, ordered, prefer_verified=False)
            result[category] = _category_analysis(category, list(merged.values()))
        else:
            result[category] = _comprehensive(category, ordered, low_quality_threshold)
    return result


def calculate_agreement_bonus(iterations: Sequence[Iteration]) -> float:
    """Bonus for high/critical findings that two or more iterations reported."""
    corroborated = 0
    ordered = _ordered(iterations)
    for category in EntityCategory:
        for finding in _merged(category, ordered, prefer_verified=False).values():
            if finding.corroborated and finding.severity.needs_attention:
                corroborated += 1
    return min(AGREEMENT_BONUS_CAP, corroborated * AGREEMENT_BONUS_PER_FINDING)


def _weighted_confidence(iterations: Sequence[Iteration]) -> float:
    if not iterations:
        raise ValueError("at least one iteration is required")
    total = 0.0
    weights = 0.0
    for rank, iteration in enumerate(_ordered(iterations), start=1):
        weight = rank * (0.5 + iteration.data_completeness_score / 100)
        total += weight * iteration.confidence_score
        weights += weight
    return total / weights


def calculate_overall_confidence(iterations: Sequence[Iteration]) -> float:
    """Recency- and completeness-weighted confidence plus agreement bonus.

    Each iteration weighs ``recency_rank * (0.5 + completeness / 100)``,
    with the oldest iteration at rank 1. The result is capped at 1.0.

    Raises:
        ValueError: If iterations is empty.
    """
    score = _weighted_confidence(iterations) + calculate_agreement_bonus(iterations)
    return round(min(1.0, score), 4)


def calculate_overall_data_completeness(iterations: Sequence[Iteration]) -> float:
    """Mean iteration completeness, clamped to [0, 100].

    Raises:
        ValueError: If iterations is empty.
    """
    if not iterations:
        raise ValueError("at least one iteration is required")
    mean = sum(i.data_completeness_score for i in iterations) / len(iterations)
    return round(max(0.0, min(100.0, mean)), 2)


def verification_level_for(confidence: float) -> VerificationLevel:
    if confidence > HIGH_VERIFICATION_THRESHOLD:
        return VerificationLevel.HIGH
    if confidence > MEDIUM_VERIFICATION_THRESHOLD:
        return VerificationLevel.MEDIUM
    return VerificationLevel.LOW


def assess_risk(findings: Iterable[StructuredFinding]) -> RiskAssessment:
    """Rate risk from indicator terms in finding titles and descriptions.

    HIGH at three or more high-risk hits; MEDIUM at one high-risk hit or
    three medium-risk hits; LOW otherwise.
    """
    high_hits = 0
    medium_hits = 0
    indicators: list[str] = []
    for finding in findings:
        text = f"{finding.title} {finding.description}".lower()
        for term in HIGH_RISK_INDICATORS:
            if term in text:
                high_hits += 1
                indicators.append(term)
        medium_hits += sum(1 for term in MEDIUM_RISK_INDICATORS if term in text)

    if high_hits >= 3:
        level = RiskLevel.HIGH
    elif high_hits >= 1 or medium_hits >= 3:
        level = RiskLevel.MEDIUM
    else:
        level = RiskLevel.LOW

    return RiskAssessment(
        overall_risk_level=level,
        high_risk_indicators=list(dict.fromkeys(indicators)),
        medium_risk_count=medium_hits,
        total_issues=high_hits + medium_hits,
        recommendations=risk_recommendations(level),
    )


def risk_recommendations(level: RiskLevel) -> list[str]:
    return [*_RISK_RECOMMENDATIONS[level], *_STANDING_RECOMMENDATIONS]


def _label(category: EntityCategory) -> str:
    return category.value.replace("_", " ")


def _follow_up(
    categories: dict[EntityCategory, CategoryAnalysis],
    covered: set[EntityCategory],
) -> list[str]:
    actions: list[str] = []
    for analysis in categories.values():
        for finding in analysis.findings:
            if finding.severity.needs_attention or finding.action_required:
                actions.append(f"Review {finding.severity.value} finding: {finding.title}")
    for category, analysis in categories.items():
        if category in covered and analysis.is_empty:
            actions.append(f"Gather additional data on {_label(category)}")
        if analysis.dropped_low_quality:
            actions.append(
                f"Re-verify {analysis.dropped_low_quality} {_label(category)} finding(s) "
                "reported only by low-quality iterations"
            )
    return list(dict.fromkeys(actions))


def build_consolidated_analysis(
    iterations: Sequence[Iteration],
    strategy: ConsolidationStrategy = ConsolidationStrategy.COMPREHENSIVE,
    low_quality_threshold: float = LOW_QUALITY_COMPLETENESS_THRESHOLD,
) -> ConsolidatedAnalysis:
    """Build a complete analysis from completed iterations.

    Deterministic for a given iteration set and strategy, apart from
    ``consolidated_at``.

    Raises:
        ValueError: If iterations is empty.
    """
    categories = merge_iteration_findings(iterations, strategy, low_quality_threshold)
    confidence = calculate_overall_confidence(iterations)
    merged_findings = [f for a in categories.values() for f in a.findings]
    covered = {c for i in iterations for c in _category_items(i)}

    return ConsolidatedAnalysis(
        strategy=strategy,
        iterations_included=[i.iteration_number for i in _ordered(iterations)],
        primary_entity=categories[EntityCategory.PRIMARY_ENTITY],
        directors=categories[EntityCategory.DIRECTORS],
        subsidiaries=categories[EntityCategory.SUBSIDIARIES],
        regulatory=categories[EntityCategory.REGULATORY],
        litigation=categories[EntityCategory.LITIGATION],
        overall_confidence_score=confidence,
        data_completeness_score=calculate_overall_data_completeness(iterations),
        verification_level=verification_level_for(confidence),
        agreement_bonus=calculate_agreement_bonus(iterations),
        requires_immediate_attention=any(f.severity.needs_attention for f in merged_findings),
        follow_up_required=_follow_up(categories, covered),
        risk_assessment=assess_risk(merged_findings),
    )


# =============================================================================
# Engine
# =============================================================================


class ConsolidationEngine:
    """Runs consolidations against jobs held by a JobStateMachine.

    At most one consolidation runs per job; a concurrent request fails
    with ConsolidationConflictError instead of waiting.

    Args:
        state: State machine owning the jobs.
        config: Default strategy and low-quality threshold.
    """

    def __init__(
        self,
        state: JobStateMachine,
        config: ConsolidationConfig | None = None,
    ) -> None:
        self.state = state
        self.config = config if config is not None else ConsolidationConfig()
        self._in_flight: set[str] = set()

    async def consolidate(
        self,
        job_id: str,
        strategy: ConsolidationStrategy | str | None = None,
        force: bool = False,
    ) -> ConsolidatedAnalysis:
        """Consolidate a job's completed iterations and store the result.

        Args:
            job_id: Job to consolidate.
            strategy: Strategy name; the configured default if omitted.
            force: Replace an existing consolidation.

        Raises:
            ConsolidationConflictError: If a run is already in flight.
            AlreadyExistsError: If a consolidation exists and force is False.
            InsufficientDataError: If fewer than two iterations completed.
        """
        chosen = ConsolidationStrategy(strategy or self.config.default_strategy)
        if job_id in self._in_flight:
            raise ConsolidationConflictError(
                f"Consolidation already in progress for job {job_id}"
            )
        self._in_flight.add(job_id)
        try:
            job = await self.state.get_job(job_id)
            if job.consolidation is not None and not force:
                raise AlreadyExistsError(
                    f"Job {job_id} already has a consolidation; pass force=True to replace it"
                )
            iterations = job.completed_iterations()
            if len(iterations) < MIN_ITERATIONS_FOR_CONSOLIDATION:
                raise InsufficientDataError(
                    job_id, len(iterations), MIN_ITERATIONS_FOR_CONSOLIDATION
                )

            analysis = build_consolidated_analysis(
                iterations, chosen, self.config.low_quality_threshold
            )
            await self.state.store_consolidation(job_id, analysis, replace=force)
        finally:
            self._in_flight.discard(job_id)

        _logger.info(
            "consolidation.completed",
            job_id=job_id,
            strategy=chosen.value,
            iterations=analysis.iterations_included,
            overall_confidence_score=analysis.overall_confidence_score,
            verification_level=analysis.verification_level.value,
            replaced=job.consolidation is not None,
        )
        return analysis

    def is_in_flight(self, job_id: str) -> bool:
        return job_id in self._in_flight

    async def get_consolidation_status(self, job_id: str) -> ConsolidationStatus:
        """Whether a job is consolidated, needs it, or cannot have it yet."""
        job = await self.state.get_job(job_id)
        completed = len(job.completed_iterations())
        can_consolidate = completed >= MIN_ITERATIONS_FOR_CONSOLIDATION
        if job.consolidation is not None:
            status = "completed"
        elif can_consolidate:
            status = "required"
        else:
            status = "not_required"
        return ConsolidationStatus(
            job_id=job_id,
            status=status,
            completed_iterations=completed,
            can_consolidate=can_consolidate,
            analysis=job.consolidation,
        )

    async def compare_iterations(
        self,
        job_id: str,
        iteration_a: int,
        iteration_b: int,
    ) -> IterationComparison:
        """Differences between two completed iterations of one job.

        Deltas are ``b - a``.

        Raises:
            InvalidStateError: If a == b or either iteration is not completed.
            IterationNotFoundError: If either iteration does not exist.
        """
        if iteration_a == iteration_b:
            raise InvalidStateError("Cannot compare an iteration with itself")

        job = await self.state.get_job(job_id)
        first = self._completed_iteration(job_id, job.get_iteration(iteration_a), iteration_a)
        second = self._completed_iteration(job_id, job.get_iteration(iteration_b), iteration_b)

        titles_a = _titles_by_key(first)
        titles_b = _titles_by_key(second)
        return IterationComparison(
            job_id=job_id,
            iteration_a=iteration_a,
            iteration_b=iteration_b,
            only_in_a=[t for k, t in titles_a.items() if k not in titles_b],
            only_in_b=[t for k, t in titles_b.items() if k not in titles_a],
            shared=[t for k, t in titles_a.items() if k in titles_b],
            confidence_delta=round(second.confidence_score - first.confidence_score, 4),
            completeness_delta=round(
                second.data_completeness_score - first.data_completeness_score, 2
            ),
        )

    @staticmethod
    def _completed_iteration(
        job_id: str,
        iteration: Iteration | None,
        number: int,
    ) -> Iteration:
        if iteration is None:
            raise IterationNotFoundError(job_id, number)
        if iteration.status != IterationStatus.COMPLETED:
            raise InvalidStateError(
                f"Iteration {number} of job {job_id} is {iteration.status.value}, not completed"
            )
        return iteration


def _titles_by_key(iteration: Iteration) -> dict[str, str]:
    titles: dict[str, str] = {}
    for items in _category_items(iteration).values():
        for finding in items:
            titles.setdefault(normalize_finding_key(finding), finding.title)
    return titles


__all__ = [
    "ConsolidationEngine",
    "HIGH_RISK_INDICATORS",
    "MEDIUM_RISK_INDICATORS",
    "assess_risk",
    "build_consolidated_analysis",
    "calculate_agreement_bonus",
    "calculate_overall_confidence",
    "calculate_overall_data_completeness",
    "merge_iteration_findings",
    "normalize_finding_key",
    "risk_recommendations",
    "verification_level_for",
]
