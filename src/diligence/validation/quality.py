"""Rule-based data quality scoring for research results.

Scores a provider result (or a fallback, or a findings payload) along five
dimensions and reports whether it clears the pass threshold. The report is
advisory: it is stored on the iteration and shown to analysts, but never
blocks the pipeline.

Rules:
- content_presence (critical): meaningful body text exists
- findings_quality (high): findings have a real title, description, severity
- source_attribution (medium): enough findings name a source
- data_consistency (medium): few contradiction or conflict markers
- error_indicators (critical): no error text leaked into the result

Example usage:
    from diligence.validation import DataQualityValidator

    report = DataQualityValidator().validate_data_quality(result)
    print(generate_quality_summary(report))
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ValidationError

from diligence.core.config import QualityConfig
from diligence.core.constants import (
    PARTIALLY_VERIFIED_SCORE_THRESHOLD,
    VERIFIED_SCORE_THRESHOLD,
)
from diligence.core.errors import ErrorContext
from diligence.core.logging import get_logger
from diligence.core.models import (
    DataQualityReport,
    QualityDimensions,
    RuleResult,
    parse_findings,
)

_logger = get_logger("quality")

Severity = Literal["critical", "high", "medium", "low"]


# =============================================================================
# Patterns
# =============================================================================

_DEFAULT_CONTRADICTION_PATTERNS = [
    r"\bhowever\b",
    r"\bbut\b",
    r"\balthough\b",
    r"\bdespite\b",
    r"contrary to",
    r"on the other hand",
    r"\bnevertheless\b",
    r"\bnonetheless\b",
]

_DEFAULT_CONFLICT_PATTERNS = [
    r"\bconflict",
    r"\bdisput",
    r"\bdisagree",
    r"\bcontradict",
]

_DEFAULT_ERROR_INDICATOR_PATTERNS = [
    r"\berror\b",
    r"\bfailed\b",
    r"\bexception\b",
    r"\bnull\b",
    r"\bundefined\b",
    r"not found",
    r"\bunavailable\b",
    r"\btime[d ]?out\b",
    r"\binvalid\b",
]

_OFFICIAL_SOURCE_MARKERS = ("gov.", ".gov", "official", "regulatory", "court", "registrar")
_NEWS_SOURCE_MARKERS = ("news", "media", "press")
_SOCIAL_SOURCE_MARKERS = ("twitter", "facebook", "social")

INSUFFICIENT_CITATIONS = "Insufficient citations - treat as indicative only"


def _compile_patterns(strings: list[str]) -> list[re.Pattern[str]]:
    return [re.compile(p, re.IGNORECASE) for p in strings]


def _matching(patterns: list[re.Pattern[str]], text: str) -> list[str]:
    """Patterns (as source strings) found at least once in text."""
    return [p.pattern for p in patterns if p.search(text)]


# =============================================================================
# Input normalisation
# =============================================================================


@dataclass
class _ResultView:
    """Uniform view over the result shapes the validator accepts."""

    body: str
    summary: str
    findings: list[dict[str, Any]]
    findings_malformed: bool
    citations: list[Any]

    @property
    def is_empty(self) -> bool:
        return not self.body.strip() and not self.findings

    @property
    def scan_text(self) -> str:
        parts = [self.body, self.summary]
        for finding in self.findings:
            parts.append(str(finding.get("title") or ""))
            parts.append(str(finding.get("description") or ""))
        return "\n".join(parts)


def _as_mapping(result: Any) -> dict[str, Any]:
    if hasattr(result, "all_findings"):
        data = result.model_dump(mode="json")
        data["findings"] = [f.model_dump(mode="json") for f in result.all_findings()]
        return data
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    if isinstance(result, Mapping):
        data = dict(result)
        if "job_type" in data and "findings" not in data:
            return _as_mapping(parse_findings(data))
        return data
    raise TypeError(f"Cannot validate result of type {type(result).__name__}")


def _read(result: Any) -> tuple[dict[str, Any], str | None]:
    """Result as a mapping, or an empty one plus the reason it was unreadable."""
    try:
        return _as_mapping(result), None
    except ValidationError as e:
        return {}, f"does not match any findings shape ({e.error_count()} errors)"
    except TypeError as e:
        return {}, str(e)


def _view(data: dict[str, Any]) -> _ResultView:
    raw_findings = data.get("findings")
    malformed = raw_findings is not None and not isinstance(raw_findings, list)
    findings: list[dict[str, Any]] = []
    if isinstance(raw_findings, list):
        for item in raw_findings:
            if isinstance(item, BaseModel):
                findings.append(item.model_dump(mode="json"))
            elif isinstance(item, Mapping):
                findings.append(dict(item))
            else:
                findings.append({"title": str(item)})

    body = data.get("content") or data.get("summary") or data.get("analysis") or ""
    citations = data.get("citations") or []
    return _ResultView(
        body=str(body),
        summary=str(data.get("summary") or ""),
        findings=findings,
        findings_malformed=malformed,
        citations=list(citations) if isinstance(citations, list) else [citations],
    )


# =============================================================================
# Rules
# =============================================================================


@dataclass
class RuleOutcome:
    """Raw outcome of a rule before it is labelled with its id."""

    passed: bool
    score: float
    message: str
    suggestions: tuple[str, ...] = ()


@dataclass
class QualityRule:
    """A named check over a result view."""

    rule_id: str
    severity: Severity
    description: str
    check: Callable[[_ResultView], RuleOutcome]


class DataQualityValidator:
    """Scores research results for completeness, specificity, and trust.

    Args:
        config: Thresholds; defaults to QualityConfig().
    """

    def __init__(self, config: QualityConfig | None = None) -> None:
        self.config = config if config is not None else QualityConfig()
        self._contradictions = _compile_patterns(_DEFAULT_CONTRADICTION_PATTERNS)
        self._conflicts = _compile_patterns(_DEFAULT_CONFLICT_PATTERNS)
        self._error_indicators = _compile_patterns(_DEFAULT_ERROR_INDICATOR_PATTERNS)
        self.rules: list[QualityRule] = [
            QualityRule(
                "content_presence", "critical",
                "Meaningful content is present", self._check_content_presence,
            ),
            QualityRule(
                "findings_quality", "high",
                "Findings are specific enough to act on", self._check_findings_quality,
            ),
            QualityRule(
                "source_attribution", "medium",
                "Findings name their sources", self._check_source_attribution,
            ),
            QualityRule(
                "data_consistency", "medium",
                "Few contradiction or conflict markers", self._check_data_consistency,
            ),
            QualityRule(
                "error_indicators", "critical",
                "No error text in the result", self._check_error_indicators,
            ),
        ]

    # -------------------------------------------------------------------------
    # Rule checks
    # -------------------------------------------------------------------------

    def _check_content_presence(self, view: _ResultView) -> RuleOutcome:
        length = len(view.body.strip())
        if length == 0:
            return RuleOutcome(
                False, 0.0, "No content found",
                ("Verify data source", "Check API response", "Review extraction logic"),
            )
        if length < self.config.min_content_length:
            return RuleOutcome(
                False, 25.0, f"Insufficient content length ({length} characters)",
                ("Expand research scope", "Use additional data sources"),
            )
        return RuleOutcome(True, min(100.0, length / 10), "Content presence validated")

    def _check_findings_quality(self, view: _ResultView) -> RuleOutcome:
        if view.findings_malformed:
            return RuleOutcome(
                False, 0.0, "Findings not in expected list format",
                ("Review findings extraction logic",),
            )
        if not view.findings:
            return RuleOutcome(
                False, 0.0, "No findings extracted",
                ("Expand research scope", "Review search criteria", "Check data sources"),
            )
        good = [
            f for f in view.findings
            if len(str(f.get("title") or "")) > 10
            and len(str(f.get("description") or "")) > 20
            and f.get("severity")
        ]
        score = len(good) / len(view.findings) * 100
        if score < 60:
            return RuleOutcome(
                False, score,
                f"Low quality findings detected ({len(good)}/{len(view.findings)} "
                "meet quality standards)",
                ("Improve finding extraction logic", "Enhance data processing"),
            )
        return RuleOutcome(True, score, "Findings quality validated")

    def _check_source_attribution(self, view: _ResultView) -> RuleOutcome:
        if not view.findings:
            return RuleOutcome(True, 100.0, "No findings to validate sources for")
        attributed = [f for f in view.findings if _finding_source(f)]
        share = len(attributed) / len(view.findings)
        if share < self.config.min_source_attribution:
            return RuleOutcome(
                False, share * 100,
                f"Insufficient source attribution ({len(attributed)}/{len(view.findings)} "
                "findings have a source)",
                ("Improve source tracking", "Enhance citation extraction"),
            )
        return RuleOutcome(True, share * 100, "Source attribution validated")

    def _check_data_consistency(self, view: _ResultView) -> RuleOutcome:
        text = view.scan_text
        contradictions = len(_matching(self._contradictions, text))
        conflicts = len(_matching(self._conflicts, text))
        score = max(0.0, 100.0 - contradictions * 10 - conflicts * 15)
        if score < 70:
            return RuleOutcome(
                False, score,
                f"Data consistency issues detected ({contradictions} contradiction "
                f"and {conflicts} conflict markers)",
                ("Review data sources", "Cross-verify information", "Resolve conflicts"),
            )
        return RuleOutcome(True, score, "Data consistency validated")

    def _check_error_indicators(self, view: _ResultView) -> RuleOutcome:
        found = _matching(self._error_indicators, view.scan_text)
        if found:
            return RuleOutcome(
                False, max(0.0, 100.0 - len(found) * 20),
                f"Error indicators found in data ({len(found)})",
                ("Review data processing", "Check API responses", "Validate data sources"),
            )
        return RuleOutcome(True, 100.0, "No error indicators found")

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate_data_quality(
        self,
        result: Any,
        ctx: ErrorContext | None = None,
    ) -> DataQualityReport:
        """Score a result.

        Args:
            result: A provider result dict, a FallbackResult, or a findings
                payload model.
            ctx: Optional job context, used for logging.

        Returns:
            DataQualityReport; ``validation_passed`` when the overall score
            reaches the configured pass threshold. A result that cannot be
            read (None, a non-mapping, an unparseable findings payload)
            scores as empty with a critical ``input`` issue.
        """
        data, unreadable = _read(result)
        view = _view(data)

        rule_results: list[RuleResult] = []
        suggestions: list[str] = []
        critical_issues: list[str] = []
        warnings: list[str] = []
        if unreadable is not None:
            critical_issues.append(f"input: Result could not be read: {unreadable}")
            _logger.warning(
                "quality.unreadable_result",
                job_id=ctx.job_id if ctx else None,
                reason=unreadable,
            )
        for rule in self.rules:
            outcome = rule.check(view)
            message = f"{rule.rule_id}: {outcome.message}"
            rule_results.append(
                RuleResult(
                    rule_id=rule.rule_id,
                    passed=outcome.passed,
                    severity=rule.severity,
                    score=round(outcome.score, 1),
                    message=message,
                )
            )
            if not outcome.passed:
                suggestions.extend(outcome.suggestions)
                if rule.severity == "critical":
                    critical_issues.append(message)
                else:
                    warnings.append(message)

        scores = {r.rule_id: r.score for r in rule_results}
        reliability = self.score_sources(view)
        dimensions = self._dimensions(view, scores, reliability)
        overall = round(dimensions.mean(), 1)
        passed = overall >= self.config.pass_threshold

        report = DataQualityReport(
            overall_score=overall,
            dimensions=dimensions,
            validation_passed=passed,
            rule_results=rule_results,
            critical_issues=critical_issues,
            warnings=warnings,
            recommendations=_recommendations(suggestions, dimensions, critical_issues),
            source_reliability_scores=reliability,
            verification_status=_verification_status(view, dimensions, critical_issues),
        )

        _logger.info(
            "quality.validated",
            job_id=ctx.job_id if ctx else None,
            iteration=ctx.iteration if ctx else None,
            overall_score=overall,
            validation_passed=passed,
            critical_issues=len(critical_issues),
            verification_status=report.verification_status,
        )
        return report

    def _dimensions(
        self,
        view: _ResultView,
        scores: dict[str, float],
        reliability: dict[str, float],
    ) -> QualityDimensions:
        if view.is_empty:
            return QualityDimensions()

        completeness = (
            scores["content_presence"]
            + (100.0 if view.summary.strip() else 0.0)
            + (100.0 if view.findings else 0.0)
        ) / 3

        specificity = 0.0
        if view.findings:
            specificity = sum(_finding_specificity(f) for f in view.findings) / len(
                view.findings
            )

        verifiability = 0.0
        if view.findings or view.citations:
            cited = sum(1 for f in view.findings if f.get("citations"))
            citation_share = min(1.0, (cited + len(view.citations)) / max(1, len(view.findings)))
            mean_reliability = (
                sum(reliability.values()) / len(reliability) if reliability else 0.0
            )
            verifiability = citation_share * 60 + mean_reliability * 0.4

        return QualityDimensions(
            completeness=round(completeness, 1),
            specificity=round(specificity, 1),
            verifiability=round(min(100.0, verifiability), 1),
            consistency=scores["data_consistency"],
            accuracy=scores["error_indicators"],
        )

    def score_sources(self, view: _ResultView) -> dict[str, float]:
        """Reliability score (0-100) per distinct source in a result view."""
        scores: dict[str, float] = {}
        for finding in view.findings:
            source = _finding_source(finding)
            if source and source not in scores:
                scores[source] = score_source_reliability(
                    source,
                    verified=finding.get("verification_level") == "high",
                    date=finding.get("date"),
                )
        for citation in view.citations:
            if isinstance(citation, Mapping):
                source = str(citation.get("source") or citation.get("url") or "")
                verified = bool(citation.get("verified"))
                date = citation.get("date")
            else:
                source, verified, date = str(citation), False, None
            if source and source not in scores:
                scores[source] = score_source_reliability(source, verified=verified, date=date)
        return scores

    def verify_data_elements(
        self,
        result: Any,
        elements: list[str],
    ) -> dict[str, RuleResult]:
        """Check that each named top-level element is present and non-empty."""
        data, _ = _read(result)
        results: dict[str, RuleResult] = {}
        for element in elements:
            value = data.get(element)
            if value is None:
                passed, message = False, f"{element} is missing"
            elif isinstance(value, str | list | dict) and not (
                value.strip() if isinstance(value, str) else value
            ):
                passed, message = False, f"{element} is empty"
            else:
                passed, message = True, f"{element} is present and valid"
            results[element] = RuleResult(
                rule_id=f"element:{element}",
                passed=passed,
                severity="medium",
                score=100.0 if passed else 0.0,
                message=message,
            )
        return results


# =============================================================================
# Helpers
# =============================================================================


def _finding_source(finding: Mapping[str, Any]) -> str:
    return str(finding.get("source") or finding.get("citation") or finding.get("reference") or "")


_VERIFICATION_POINTS = {"high": 50.0, "medium": 35.0, "low": 15.0}


def _finding_specificity(finding: Mapping[str, Any]) -> float:
    points = 50.0 if _finding_source(finding) else 0.0
    level = finding.get("verification_level")
    return points + _VERIFICATION_POINTS.get(str(level), 0.0)


def score_source_reliability(
    source: str,
    verified: bool = False,
    date: Any = None,
    now: datetime | None = None,
) -> float:
    """Heuristic reliability of a source name or URL, in [0, 100].

    Official and court sources rank highest, news in the middle, social
    media lowest. Verification and recent ISO dates add points; data older
    than five years loses some. Dates that are not ISO strings are ignored.
    """
    score = 50.0
    lowered = source.lower()
    if any(marker in lowered for marker in _OFFICIAL_SOURCE_MARKERS):
        score += 30
    if any(marker in lowered for marker in _NEWS_SOURCE_MARKERS):
        score += 15
    if any(marker in lowered for marker in _SOCIAL_SOURCE_MARKERS):
        score -= 20
    if verified:
        score += 20

    if date and isinstance(date, str):
        try:
            published = datetime.fromisoformat(date)
        except ValueError:
            published = None
        if published is not None:
            if published.tzinfo is None:
                published = published.replace(tzinfo=UTC)
            age_days = ((now or datetime.now(UTC)) - published).days
            if age_days < 30:
                score += 10
            elif age_days < 365:
                score += 5
            elif age_days > 1825:
                score -= 10

    return max(0.0, min(100.0, score))


def _recommendations(
    suggestions: list[str],
    dimensions: QualityDimensions,
    critical_issues: list[str],
) -> list[str]:
    recs = list(suggestions)
    if critical_issues:
        recs.append("Address critical data quality issues before proceeding")
    if dimensions.completeness < 60:
        recs.append("Enhance data collection from additional sources")
    if dimensions.accuracy < 70:
        recs.append("Implement additional verification steps")
    if dimensions.consistency < 70:
        recs.append("Cross-reference information across multiple sources")
    if dimensions.verifiability < 60:
        recs.append("Prioritize official and verified information sources")
    if dimensions.verifiability < 40:
        recs.append(INSUFFICIENT_CITATIONS)
    if not recs:
        recs.append("Data quality meets professional standards")
    return list(dict.fromkeys(recs))


def _verification_status(
    view: _ResultView,
    dimensions: QualityDimensions,
    critical_issues: list[str],
) -> Literal["verified", "partially_verified", "unverified", "disputed"]:
    if view.is_empty:
        return "unverified"
    if critical_issues:
        return "disputed"
    trust = (dimensions.accuracy + dimensions.verifiability + dimensions.consistency) / 3
    if trust >= VERIFIED_SCORE_THRESHOLD:
        return "verified"
    if trust >= PARTIALLY_VERIFIED_SCORE_THRESHOLD:
        return "partially_verified"
    return "unverified"


def _verdict(score: float) -> str:
    if score >= 85:
        return "Excellent data quality - suitable for professional analysis"
    if score >= 70:
        return "Good data quality - suitable for analysis with minor limitations"
    if score >= 50:
        return "Moderate data quality - usable but requires careful interpretation"
    return "Poor data quality - significant limitations affect reliability"


def _mark(score: float) -> str:
    if score >= 80:
        return "OK"
    if score >= 60:
        return "WARN"
    return "FAIL"


def generate_quality_summary(report: DataQualityReport) -> str:
    """Plain-text summary of a report for logs and analyst notes."""
    lines = [
        f"Data Quality Assessment: {report.overall_score:g}/100",
        _verdict(report.overall_score),
        "",
        "Quality Dimensions:",
    ]
    for name, score in report.dimensions.model_dump().items():
        lines.append(f"  [{_mark(score)}] {name}: {score:g}/100")

    if report.critical_issues:
        lines += ["", f"Critical Issues ({len(report.critical_issues)}):"]
        lines += [f"  - {issue}" for issue in report.critical_issues]
    if report.warnings:
        lines += ["", f"Warnings ({len(report.warnings)}):"]
        lines += [f"  - {warning}" for warning in report.warnings]
    if report.recommendations:
        lines += ["", "Recommendations:"]
        lines += [f"  - {rec}" for rec in report.recommendations]

    lines += ["", f"Verification Status: {report.verification_status.upper()}"]
    return "\n".join(lines)


__all__ = [
    "DataQualityValidator",
    "INSUFFICIENT_CITATIONS",
    "QualityRule",
    "RuleOutcome",
    "generate_quality_summary",
    "score_source_reliability",
]
