"""Diagnostic commands for the diligence CLI.

- `diligence classify` - Classify an error message or status code
- `diligence fallback` - Render the limited-data fallback for a company
- `diligence validate` - Score a result JSON file for data quality
- `diligence config`   - Validate a configuration file and show endpoints
- `diligence presets`  - List research presets

Exit codes for validate and config:
  0: OK
  1: Quality below the pass threshold
  2: Cannot read or parse the input
"""

from __future__ import annotations

import json
from pathlib import Path

import typer
import yaml
from pydantic import ValidationError
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from diligence.core.config import DiligenceConfig
from diligence.core.errors import ErrorClassifier, ErrorContext
from diligence.core.models import RESEARCH_PRESETS, JobType, parse_findings
from diligence.execution.fallback import FallbackGenerator
from diligence.validation.quality import DataQualityValidator, generate_quality_summary

from .output import StatusColors, console, dimensions_table, error_table, presets_table


def classify(
    message: str = typer.Argument(..., help="Error message text to classify"),
    status_code: int | None = typer.Option(
        None,
        "--status-code",
        "-s",
        help="HTTP status code returned by the provider",
    ),
    company: str | None = typer.Option(None, "--company", "-c", help="Company name"),
    job_type: str | None = typer.Option(None, "--job-type", "-t", help="Job type"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Classify a provider error and show its handling policy."""
    raw: object = message
    if status_code is not None:
        raw = {"status_code": status_code, "message": message}

    error = ErrorClassifier().classify(
        raw, ErrorContext(company_name=company, job_type=job_type)
    )
    if json_output:
        typer.echo(error.model_dump_json(indent=2))
        return

    console.print(error_table(error))
    if error.suggested_actions:
        console.print()
        console.print("[dim]Suggested actions:[/dim]")
        for action in error.suggested_actions:
            console.print(f"  • {action}")


def fallback(
    company: str = typer.Argument(..., help="Company name"),
    job_type: JobType = typer.Argument(..., help="Job type"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Show the professional limited-data response for a company."""
    result = FallbackGenerator().generate_professional_limited_data_response(
        company, job_type.value
    )
    if json_output:
        typer.echo(result.model_dump_json(indent=2))
        return

    console.print(Panel(result.content, title=f"Fallback: {company}", border_style="yellow"))
    console.print(f"Confidence: [red]{result.confidence_score:g}[/red]  "
                  f"Completeness: [red]{result.data_completeness:g}[/red]")
    console.print("[dim]Limitations:[/dim]")
    for item in result.limitations:
        console.print(f"  • {item}")


def validate(
    result_file: Path = typer.Argument(
        ...,
        help="Path to a result JSON file",
        exists=True,
        readable=True,
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output report as JSON"),
) -> None:
    """Score a provider result for data quality.

    Exit codes:
      0: Passed
      1: Below the pass threshold
      2: Cannot read or parse the file
    """
    try:
        data = json.loads(result_file.read_text())
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Cannot read result file:[/red] {escape(str(e))}")
        raise typer.Exit(2) from None

    if not isinstance(data, dict):
        console.print("[red]Result file must contain a JSON object[/red]")
        raise typer.Exit(2)

    if "job_type" in data and "findings" not in data:
        try:
            data = parse_findings(data)
        except ValidationError as e:
            console.print(
                f"[red]Result does not match any findings shape:[/red] {escape(str(e))}"
            )
            raise typer.Exit(2) from None

    report = DataQualityValidator().validate_data_quality(data)

    if json_output:
        typer.echo(report.model_dump_json(indent=2))
    else:
        console.print(dimensions_table(report))
        console.print()
        console.print(generate_quality_summary(report), markup=False, highlight=False)
        color = StatusColors.VERIFICATION.get(report.verification_status, "white")
        console.print(f"\nVerification: [{color}]{report.verification_status}[/{color}]")

    if not report.validation_passed:
        raise typer.Exit(1)


def config(
    config_file: Path | None = typer.Argument(
        None,
        help="Path to a YAML configuration file (defaults shown if omitted)",
    ),
) -> None:
    """Validate a configuration file and show endpoint policies."""
    if config_file is None:
        settings = DiligenceConfig()
        source = "built-in defaults"
    else:
        try:
            settings = DiligenceConfig.from_yaml(config_file)
        except (OSError, yaml.YAMLError) as e:
            console.print(f"[red]Cannot read config file:[/red] {escape(str(e))}")
            raise typer.Exit(2) from None
        except ValidationError as e:
            console.print(f"[red]Schema validation failed:[/red] {escape(str(e))}")
            raise typer.Exit(2) from None
        source = str(config_file)

    console.print(f"[green]✓[/green] Configuration valid ({source})")

    table = Table(title="Endpoints")
    table.add_column("Key", style="cyan")
    table.add_column("URL")
    table.add_column("Timeout", justify="right")
    table.add_column("Retries", justify="right")
    table.add_column("Backoff", justify="right")
    table.add_column("Breaker", justify="right")
    for key in settings.endpoints:
        endpoint = settings.endpoint(key)
        retry = settings.retry_for(key)
        breaker = settings.circuit_breaker_for(key)
        table.add_row(
            key,
            endpoint.url or "-",
            f"{endpoint.timeout_seconds:g}s",
            str(retry.max_retries),
            f"{retry.base_delay_seconds:g}s x{retry.exponential_base:g}",
            f"{breaker.failure_threshold} / {breaker.cooldown_seconds:g}s",
        )
    console.print(table)
    console.print(
        f"Consolidation: {settings.consolidation.default_strategy}  "
        f"Quality pass: {settings.quality.pass_threshold:g}  "
        f"Max iterations: {settings.jobs.max_iterations}"
    )


def presets() -> None:
    """List research presets."""
    console.print(presets_table(list(RESEARCH_PRESETS)))
