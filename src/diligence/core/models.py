"""Research job, iteration, findings, and analysis models.

Defines the state that a host application persists for multi-iteration
research jobs, the per-job-type findings payloads, and the records
produced by consolidation and quality validation.
"""

from __future__ import annotations

import re
from abc import abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from diligence.core.constants import (
    DEFAULT_MAX_FAILED_ITERATIONS,
    DEFAULT_MAX_ITERATIONS,
    RUNNING_PROGRESS_CEILING,
)
from diligence.core.errors import EnhancedError
from diligence.core.exceptions import DuplicateIterationError
from diligence.core.logging import get_logger

# Module-level logger for job state transitions
_logger = get_logger("models")


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


# =============================================================================
# Enums
# =============================================================================


class JobType(str, Enum):
    """Kinds of research a job can perform."""

    FULL_DUE_DILIGENCE = "full_due_diligence"
    DIRECTORS_RESEARCH = "directors_research"
    LEGAL_RESEARCH = "legal_research"
    NEGATIVE_NEWS = "negative_news"
    REGULATORY_RESEARCH = "regulatory_research"
    RELATED_COMPANIES = "related_companies"


class JobStatus(str, Enum):
    """Status of a research job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class IterationStatus(str, Enum):
    """Status of a single iteration."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class FindingSeverity(str, Enum):
    """Severity of an individual finding."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @property
    def rank(self) -> int:
        """Higher is more severe."""
        return _SEVERITY_RANK[self]

    @property
    def needs_attention(self) -> bool:
        return self in (FindingSeverity.CRITICAL, FindingSeverity.HIGH)


_SEVERITY_RANK = {
    FindingSeverity.INFO: 0,
    FindingSeverity.LOW: 1,
    FindingSeverity.MEDIUM: 2,
    FindingSeverity.HIGH: 3,
    FindingSeverity.CRITICAL: 4,
}


class VerificationLevel(str, Enum):
    """Coarse confidence tier for a finding or an analysis."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Higher is better verified."""
        return {"low": 0, "medium": 1, "high": 2}[self.value]


class ConsolidationStrategy(str, Enum):
    """How iterations are merged into one analysis."""

    MERGE = "merge"
    """Union of findings per category, exact duplicates removed."""

    LATEST = "latest"
    """Most recent iteration with data, per category."""

    COMPREHENSIVE = "comprehensive"
    """Merge, prefer better verified items, drop low-quality-only items."""


class EntityCategory(str, Enum):
    """Categories that consolidated analyses are organised by."""

    PRIMARY_ENTITY = "primary_entity"
    DIRECTORS = "directors"
    SUBSIDIARIES = "subsidiaries"
    REGULATORY = "regulatory"
    LITIGATION = "litigation"


class RiskLevel(str, Enum):
    """Overall risk rating of a consolidated analysis."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


# =============================================================================
# Findings
# =============================================================================


_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def _normalize_text(text: str) -> str:
    text = _PUNCTUATION_RE.sub("", text.lower())
    return _WHITESPACE_RE.sub(" ", text).strip()


class StructuredFinding(BaseModel):
    """A single finding reported by an iteration."""

    title: str
    description: str = ""
    category: str = Field(default="general", description="Free-form topic, e.g. 'litigation'")
    severity: FindingSeverity = FindingSeverity.INFO
    source: str | None = None
    citations: list[str] = Field(default_factory=list)
    verification_level: VerificationLevel = VerificationLevel.LOW
    action_required: bool = False
    date: str | None = None

    def normalized_key(self) -> str:
        """Dedupe key: case, whitespace, and punctuation insensitive title + description."""
        return f"{_normalize_text(self.title)}|{_normalize_text(self.description)}"


class ConsolidatedFinding(StructuredFinding):
    """A finding after merging, with the iterations that reported it."""

    reported_in: list[int] = Field(default_factory=list)

    @property
    def corroborated(self) -> bool:
        """True when two or more iterations independently reported it."""
        return len(set(self.reported_in)) >= 2


FindingList = list[StructuredFinding]


class _FindingsBase(BaseModel):
    """Fields shared by every findings payload."""

    summary: str = ""
    content: str = ""
    primary_entity: FindingList = Field(default_factory=list)

    @abstractmethod
    def by_category(self) -> dict[EntityCategory, list[StructuredFinding]]:
        """Findings grouped into consolidation categories."""

    def all_findings(self) -> list[StructuredFinding]:
        return [f for items in self.by_category().values() for f in items]

    @classmethod
    def from_finding_list(cls, items: list[Any], **fields: Any) -> _FindingsBase:
        """Build a payload from a flat list of findings.

        Each item is filed under the list field named by its ``category``
        (``"Litigation"`` goes to ``litigation``); anything else lands in
        ``primary_entity``.

        Raises:
            ValidationError: If an item is not a valid StructuredFinding.
        """
        slots = set(cls.model_fields) - {"job_type", "summary", "content"}
        grouped: dict[str, list[StructuredFinding]] = {}
        for item in items:
            finding = StructuredFinding.model_validate(item)
            slot = _normalize_text(finding.category).replace(" ", "_")
            grouped.setdefault(slot if slot in slots else "primary_entity", []).append(finding)
        return cls(**fields, **grouped)


class DirectorsFindings(_FindingsBase):
    job_type: Literal["directors_research"] = "directors_research"
    directors: FindingList = Field(default_factory=list)

    def by_category(self) -> dict[EntityCategory, list[StructuredFinding]]:
        return {
            EntityCategory.PRIMARY_ENTITY: self.primary_entity,
            EntityCategory.DIRECTORS: self.directors,
        }


class LegalFindings(_FindingsBase):
    job_type: Literal["legal_research"] = "legal_research"
    litigation: FindingList = Field(default_factory=list)
    regulatory: FindingList = Field(default_factory=list)

    def by_category(self) -> dict[EntityCategory, list[StructuredFinding]]:
        return {
            EntityCategory.PRIMARY_ENTITY: self.primary_entity,
            EntityCategory.LITIGATION: self.litigation,
            EntityCategory.REGULATORY: self.regulatory,
        }


class NegativeNewsFindings(_FindingsBase):
    """Adverse media; items naming directors are kept apart."""

    job_type: Literal["negative_news"] = "negative_news"
    adverse_media: FindingList = Field(default_factory=list)
    director_mentions: FindingList = Field(default_factory=list)

    def by_category(self) -> dict[EntityCategory, list[StructuredFinding]]:
        return {
            EntityCategory.PRIMARY_ENTITY: [*self.primary_entity, *self.adverse_media],
            EntityCategory.DIRECTORS: self.director_mentions,
        }


class RegulatoryFindings(_FindingsBase):
    job_type: Literal["regulatory_research"] = "regulatory_research"
    regulatory: FindingList = Field(default_factory=list)

    def by_category(self) -> dict[EntityCategory, list[StructuredFinding]]:
        return {
            EntityCategory.PRIMARY_ENTITY: self.primary_entity,
            EntityCategory.REGULATORY: self.regulatory,
        }


class RelatedCompaniesFindings(_FindingsBase):
    job_type: Literal["related_companies"] = "related_companies"
    subsidiaries: FindingList = Field(default_factory=list)

    def by_category(self) -> dict[EntityCategory, list[StructuredFinding]]:
        return {
            EntityCategory.PRIMARY_ENTITY: self.primary_entity,
            EntityCategory.SUBSIDIARIES: self.subsidiaries,
        }


class FullDueDiligenceFindings(_FindingsBase):
    job_type: Literal["full_due_diligence"] = "full_due_diligence"
    directors: FindingList = Field(default_factory=list)
    subsidiaries: FindingList = Field(default_factory=list)
    regulatory: FindingList = Field(default_factory=list)
    litigation: FindingList = Field(default_factory=list)

    def by_category(self) -> dict[EntityCategory, list[StructuredFinding]]:
        return {
            EntityCategory.PRIMARY_ENTITY: self.primary_entity,
            EntityCategory.DIRECTORS: self.directors,
            EntityCategory.SUBSIDIARIES: self.subsidiaries,
            EntityCategory.REGULATORY: self.regulatory,
            EntityCategory.LITIGATION: self.litigation,
        }


Findings = Annotated[
    DirectorsFindings
    | LegalFindings
    | NegativeNewsFindings
    | RegulatoryFindings
    | RelatedCompaniesFindings
    | FullDueDiligenceFindings,
    Field(discriminator="job_type"),
]
"""Findings payload, tagged by job type."""

_findings_adapter: TypeAdapter[Any] = TypeAdapter(Findings)

_FINDINGS_BY_JOB_TYPE: dict[JobType, type[_FindingsBase]] = {
    JobType.DIRECTORS_RESEARCH: DirectorsFindings,
    JobType.LEGAL_RESEARCH: LegalFindings,
    JobType.NEGATIVE_NEWS: NegativeNewsFindings,
    JobType.REGULATORY_RESEARCH: RegulatoryFindings,
    JobType.RELATED_COMPANIES: RelatedCompaniesFindings,
    JobType.FULL_DUE_DILIGENCE: FullDueDiligenceFindings,
}


def findings_type_for(job_type: JobType) -> type[_FindingsBase]:
    """Findings model class used by a job type."""
    return _FINDINGS_BY_JOB_TYPE[job_type]


def parse_findings(data: Any) -> Any:
    """Validate a raw dict into the findings variant named by its job_type."""
    return _findings_adapter.validate_python(data)


# =============================================================================
# Data quality
# =============================================================================


class QualityDimensions(BaseModel):
    """Dimension sub-scores, each in [0, 100]."""

    completeness: float = Field(default=0.0, ge=0, le=100)
    specificity: float = Field(default=0.0, ge=0, le=100)
    verifiability: float = Field(default=0.0, ge=0, le=100)
    consistency: float = Field(default=0.0, ge=0, le=100)
    accuracy: float = Field(default=0.0, ge=0, le=100)

    def mean(self) -> float:
        values = (
            self.completeness,
            self.specificity,
            self.verifiability,
            self.consistency,
            self.accuracy,
        )
        return sum(values) / len(values)


class RuleResult(BaseModel):
    """Outcome of one quality rule."""

    rule_id: str
    passed: bool
    severity: Literal["critical", "high", "medium", "low"]
    score: float = Field(ge=0, le=100)
    message: str


class DataQualityReport(BaseModel):
    """Advisory quality score for a result. Never blocks the pipeline."""

    overall_score: float = Field(ge=0, le=100)
    dimensions: QualityDimensions
    validation_passed: bool
    rule_results: list[RuleResult] = Field(default_factory=list)
    critical_issues: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    source_reliability_scores: dict[str, float] = Field(default_factory=dict)
    verification_status: Literal[
        "verified", "partially_verified", "unverified", "disputed"
    ] = "unverified"
    validated_at: datetime = Field(default_factory=_utc_now)


# =============================================================================
# Consolidation
# =============================================================================


class CategoryAnalysis(BaseModel):
    """Consolidated findings for one entity category."""

    model_config = ConfigDict(frozen=True)

    category: EntityCategory
    findings: list[ConsolidatedFinding] = Field(default_factory=list)
    source_iterations: list[int] = Field(default_factory=list)
    sources: list[str] = Field(default_factory=list)
    dropped_low_quality: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.findings


class RiskAssessment(BaseModel):
    """Risk rating derived from indicator terms in the merged findings."""

    model_config = ConfigDict(frozen=True)

    overall_risk_level: RiskLevel = RiskLevel.LOW
    high_risk_indicators: list[str] = Field(default_factory=list)
    medium_risk_count: int = 0
    total_issues: int = 0
    recommendations: list[str] = Field(default_factory=list)


class ConsolidatedAnalysis(BaseModel):
    """One authoritative analysis built from several iterations.

    Frozen: re-consolidation replaces the whole record.
    """

    model_config = ConfigDict(frozen=True)

    strategy: ConsolidationStrategy
    iterations_included: list[int]
    primary_entity: CategoryAnalysis
    directors: CategoryAnalysis
    subsidiaries: CategoryAnalysis
    regulatory: CategoryAnalysis
    litigation: CategoryAnalysis
    overall_confidence_score: float = Field(ge=0, le=1)
    data_completeness_score: float = Field(ge=0, le=100)
    verification_level: VerificationLevel
    agreement_bonus: float = Field(default=0.0, ge=0)
    requires_immediate_attention: bool = False
    follow_up_required: list[str] = Field(default_factory=list)
    risk_assessment: RiskAssessment = Field(default_factory=RiskAssessment)
    consolidated_at: datetime = Field(default_factory=_utc_now)

    def category(self, category: EntityCategory) -> CategoryAnalysis:
        result: CategoryAnalysis = getattr(self, category.value)
        return result

    def categories(self) -> list[CategoryAnalysis]:
        return [self.category(c) for c in EntityCategory]


class ConsolidationStatus(BaseModel):
    """Whether a job has, needs, or cannot yet have a consolidation."""

    job_id: str
    status: Literal["completed", "required", "not_required"]
    completed_iterations: int
    can_consolidate: bool
    analysis: ConsolidatedAnalysis | None = None


class IterationComparison(BaseModel):
    """Differences between two completed iterations of the same job."""

    job_id: str
    iteration_a: int
    iteration_b: int
    only_in_a: list[str] = Field(default_factory=list)
    only_in_b: list[str] = Field(default_factory=list)
    shared: list[str] = Field(default_factory=list)
    confidence_delta: float = 0.0
    completeness_delta: float = 0.0


# =============================================================================
# Jobs and iterations
# =============================================================================


class Iteration(BaseModel):
    """One pass of a research job against its providers."""

    iteration_number: int = Field(ge=1)
    status: IterationStatus = IterationStatus.RUNNING
    findings: Findings | None = None
    confidence_score: float = Field(default=0.0, ge=0, le=1)
    data_completeness_score: float = Field(default=0.0, ge=0, le=100)
    quality_report: DataQualityReport | None = None
    error: EnhancedError | None = None
    started_at: datetime = Field(default_factory=_utc_now)
    completed_at: datetime | None = None

    @property
    def is_finished(self) -> bool:
        return self.status != IterationStatus.RUNNING


class ResearchJob(BaseModel):
    """Complete state of a research job.

    Mutated only through the mark_* methods, which the state machine
    calls while holding the job's lock.
    """

    job_id: str = Field(description="Unique job identifier")
    user_id: str | None = None
    company_name: str
    job_type: JobType
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)

    iterations: list[Iteration] = Field(default_factory=list)
    last_iteration_number: int = Field(
        default=0, description="Highest iteration number ever assigned"
    )
    consolidation: ConsolidatedAnalysis | None = None
    requires_attention: bool = False

    max_iterations: int = Field(default=DEFAULT_MAX_ITERATIONS, ge=1)
    max_failed_iterations: int = Field(default=DEFAULT_MAX_FAILED_ITERATIONS, ge=1)
    error_message: str | None = None

    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def get_iteration(self, iteration_number: int) -> Iteration | None:
        for iteration in self.iterations:
            if iteration.iteration_number == iteration_number:
                return iteration
        return None

    def completed_iterations(self) -> list[Iteration]:
        """Completed iterations in iteration-number order."""
        return sorted(
            (i for i in self.iterations if i.status == IterationStatus.COMPLETED),
            key=lambda i: i.iteration_number,
        )

    def failed_iterations(self) -> list[Iteration]:
        return [i for i in self.iterations if i.status == IterationStatus.FAILED]

    def _touch(self) -> None:
        self.updated_at = _utc_now()

    def mark_iteration_started(self) -> Iteration:
        """Allocate the next iteration number and start it."""
        previous_status = self.status
        number = self.last_iteration_number + 1
        if self.get_iteration(number) is not None:
            raise DuplicateIterationError(
                f"Iteration {number} already exists on job {self.job_id}; "
                "the stored iteration counter is behind"
            )
        self.last_iteration_number = number
        iteration = Iteration(iteration_number=number)
        self.iterations.append(iteration)

        if self.status == JobStatus.PENDING:
            self.status = JobStatus.RUNNING
            self.started_at = _utc_now()
        self._touch()

        _logger.debug(
            "iteration_started",
            job_id=self.job_id,
            iteration_number=iteration.iteration_number,
            previous_status=previous_status.value,
        )
        return iteration

    def mark_iteration_completed(
        self,
        iteration: Iteration,
        findings: Any,
        confidence_score: float,
        data_completeness_score: float,
        quality_report: DataQualityReport | None = None,
    ) -> None:
        """Complete an iteration and advance progress.

        Progress is ``completed / max_iterations`` capped at 99 while the job
        runs, and never decreases. Reaching max_iterations completes the job.
        """
        iteration.status = IterationStatus.COMPLETED
        iteration.findings = findings
        iteration.confidence_score = confidence_score
        iteration.data_completeness_score = data_completeness_score
        iteration.quality_report = quality_report
        iteration.completed_at = _utc_now()

        if findings is not None and any(
            f.severity.needs_attention for f in findings.all_findings()
        ):
            self.requires_attention = True

        completed = len(self.completed_iterations())
        running_progress = min(
            RUNNING_PROGRESS_CEILING, int(completed / self.max_iterations * 100)
        )
        self.progress = max(self.progress, running_progress)
        self._touch()

        job_completed = completed >= self.max_iterations
        if job_completed:
            self.mark_job_completed()

        _logger.debug(
            "iteration_completed",
            job_id=self.job_id,
            iteration_number=iteration.iteration_number,
            confidence_score=confidence_score,
            data_completeness_score=data_completeness_score,
            progress=self.progress,
            job_completed=job_completed,
        )

    def mark_iteration_failed(self, iteration: Iteration, error: EnhancedError) -> bool:
        """Fail an iteration; returns True when that exhausts the job."""
        iteration.status = IterationStatus.FAILED
        iteration.error = error
        iteration.completed_at = _utc_now()
        self._touch()

        failed = len(self.failed_iterations())
        exhausted = failed >= self.max_failed_iterations and not self.completed_iterations()

        _logger.debug(
            "iteration_failed",
            job_id=self.job_id,
            iteration_number=iteration.iteration_number,
            error_category=error.category.value,
            failed_iterations=failed,
            exhausted=exhausted,
        )
        if exhausted:
            self.mark_job_failed(
                f"No successful iterations after {failed} failed attempt(s): {error.message}"
            )
        return exhausted

    def mark_job_completed(self) -> None:
        previous_status = self.status
        self.status = JobStatus.COMPLETED
        self.progress = 100
        self.completed_at = _utc_now()
        self._touch()

        _logger.info(
            "job_completed",
            job_id=self.job_id,
            previous_status=previous_status.value,
            completed_iterations=len(self.completed_iterations()),
        )

    def mark_job_failed(self, error_message: str) -> None:
        """Mark the entire job as failed."""
        previous_status = self.status
        self.status = JobStatus.FAILED
        self.error_message = error_message
        self.completed_at = _utc_now()
        self._touch()

        _logger.error(
            "job_failed",
            job_id=self.job_id,
            previous_status=previous_status.value,
            completed_iterations=len(self.completed_iterations()),
            error_message=error_message[:200] if error_message else None,
        )

    def mark_job_cancelled(self) -> None:
        previous_status = self.status
        self.status = JobStatus.CANCELLED
        self.completed_at = _utc_now()
        self._touch()

        _logger.info(
            "job_cancelled",
            job_id=self.job_id,
            previous_status=previous_status.value,
        )

    def running_iterations(self) -> list[Iteration]:
        return [i for i in self.iterations if not i.is_finished]

    def abandon_running_iterations(self, error: EnhancedError) -> list[int]:
        """Fail iterations left running by a job that has ended.

        Unlike mark_iteration_failed() this never re-evaluates the job.
        """
        abandoned = []
        for iteration in self.running_iterations():
            iteration.status = IterationStatus.FAILED
            iteration.error = error
            iteration.completed_at = _utc_now()
            abandoned.append(iteration.iteration_number)
        if abandoned:
            self._touch()
            _logger.info(
                "iterations_abandoned",
                job_id=self.job_id,
                iteration_numbers=abandoned,
                job_status=self.status.value,
            )
        return abandoned

    def set_consolidation(self, analysis: ConsolidatedAnalysis) -> None:
        """Replace the consolidation wholesale."""
        self.consolidation = analysis
        if analysis.requires_immediate_attention:
            self.requires_attention = True
        self._touch()


# =============================================================================
# Presets
# =============================================================================


@dataclass(frozen=True)
class ResearchPreset:
    """Named research configuration offered to callers."""

    preset_id: str
    name: str
    description: str
    job_type: JobType
    focus_areas: tuple[str, ...]
    time_period_months: int
    estimated_duration_minutes: int
    max_iterations: int = DEFAULT_MAX_ITERATIONS


RESEARCH_PRESETS: tuple[ResearchPreset, ...] = (
    ResearchPreset(
        preset_id="comprehensive_directors",
        name="Comprehensive Directors Research",
        description="Background verification of directors, management, and key personnel",
        job_type=JobType.DIRECTORS_RESEARCH,
        focus_areas=(
            "criminal_charges",
            "regulatory_sanctions",
            "bankruptcy",
            "professional_history",
            "cross_directorships",
        ),
        time_period_months=60,
        estimated_duration_minutes=8,
    ),
    ResearchPreset(
        preset_id="comprehensive_legal",
        name="Comprehensive Legal Research",
        description="Legal cases, regulatory compliance, and enforcement actions",
        job_type=JobType.LEGAL_RESEARCH,
        focus_areas=(
            "court_cases",
            "regulatory_violations",
            "tax_disputes",
            "enforcement_actions",
            "insolvency_proceedings",
        ),
        time_period_months=60,
        estimated_duration_minutes=10,
    ),
    ResearchPreset(
        preset_id="comprehensive_negative_news",
        name="Comprehensive Negative News Analysis",
        description="Adverse media coverage, incidents, and reputational risk",
        job_type=JobType.NEGATIVE_NEWS,
        focus_areas=(
            "project_failures",
            "customer_complaints",
            "safety_incidents",
            "management_issues",
            "financial_distress",
        ),
        time_period_months=36,
        estimated_duration_minutes=8,
    ),
    ResearchPreset(
        preset_id="comprehensive_regulatory",
        name="Comprehensive Regulatory Research",
        description="Regulatory compliance and enforcement actions across authorities",
        job_type=JobType.REGULATORY_RESEARCH,
        focus_areas=(
            "securities_regulator_actions",
            "central_bank_enforcement",
            "tax_disputes",
            "environmental_violations",
            "sectoral_regulations",
        ),
        time_period_months=60,
        estimated_duration_minutes=12,
    ),
    ResearchPreset(
        preset_id="comprehensive_due_diligence",
        name="Complete Due Diligence Suite",
        description="Due diligence across all research areas",
        job_type=JobType.FULL_DUE_DILIGENCE,
        focus_areas=(),
        time_period_months=60,
        estimated_duration_minutes=25,
        max_iterations=5,
    ),
)


def get_preset(preset_id: str) -> ResearchPreset | None:
    for preset in RESEARCH_PRESETS:
        if preset.preset_id == preset_id:
            return preset
    return None
