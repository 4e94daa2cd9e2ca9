"""Rich formatting for the diligence CLI.

Centralizes the console, color schemes, and table builders so every
command renders categories and scores the same way.
"""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from diligence.core.errors import EnhancedError, ErrorSeverity
from diligence.core.models import DataQualityReport, ResearchPreset

console = Console()


class StatusColors:
    """Color mappings for severities and scores."""

    SEVERITY: dict[ErrorSeverity, str] = {
        ErrorSeverity.CRITICAL: "bold red",
        ErrorSeverity.HIGH: "red",
        ErrorSeverity.MEDIUM: "yellow",
        ErrorSeverity.LOW: "green",
    }

    VERIFICATION: dict[str, str] = {
        "verified": "green",
        "partially_verified": "yellow",
        "unverified": "dim",
        "disputed": "red",
    }

    @staticmethod
    def for_score(score: float) -> str:
        if score >= 80:
            return "green"
        if score >= 60:
            return "yellow"
        return "red"


def format_score(score: float) -> str:
    color = StatusColors.for_score(score)
    return f"[{color}]{score:g}[/{color}]"


def error_table(error: EnhancedError) -> Table:
    """Two-column table describing a classified error."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="dim")
    table.add_column("Value")

    severity_color = StatusColors.SEVERITY.get(error.severity, "white")
    table.add_row("Category", f"[bold]{error.category.value}[/bold]")
    table.add_row("Severity", f"[{severity_color}]{error.severity.value}[/{severity_color}]")
    table.add_row("Recoverable", "yes" if error.recoverable else "no")
    table.add_row("Strategy", error.fallback_strategy.value)
    if error.status_code is not None:
        table.add_row("Status code", str(error.status_code))
    if error.retry_after_seconds is not None:
        table.add_row("Retry after", f"{error.retry_after_seconds:g}s")
    table.add_row("User message", error.user_message)
    return table


def dimensions_table(report: DataQualityReport) -> Table:
    table = Table(title="Quality Dimensions")
    table.add_column("Dimension", style="cyan")
    table.add_column("Score", justify="right")
    for name, score in report.dimensions.model_dump().items():
        table.add_row(name, format_score(score))
    return table


def presets_table(presets: list[ResearchPreset]) -> Table:
    table = Table(title="Research Presets")
    table.add_column("Preset", style="cyan")
    table.add_column("Job type")
    table.add_column("Iterations", justify="right")
    table.add_column("Minutes", justify="right")
    for preset in presets:
        table.add_row(
            preset.preset_id,
            preset.job_type.value,
            str(preset.max_iterations),
            str(preset.estimated_duration_minutes),
        )
    return table
