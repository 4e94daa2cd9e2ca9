"""Diligence CLI - diagnostics for the research core.

Package structure:
    cli/
    ├── __init__.py    # This file - app assembly and global options
    ├── commands.py    # classify, fallback, validate, config, presets
    └── output.py      # Rich console, colors, and table builders
"""

from __future__ import annotations

from typing import Annotated, cast

import typer

from diligence import __version__
from diligence.core.logging import LogFormat, LogLevel, configure_logging

from .commands import classify, config, fallback, presets, validate
from .output import console

app = typer.Typer(
    name="diligence",
    help="Diagnostics for resilient multi-iteration research jobs",
    add_completion=False,
)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
_LOG_FORMATS = ("json", "console")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"diligence v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    log_level: Annotated[
        str,
        typer.Option(
            "--log-level",
            "-L",
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="DILIGENCE_LOG_LEVEL",
        ),
    ] = "WARNING",
    log_format: Annotated[
        str,
        typer.Option(
            "--log-format",
            help="Log format: json or console",
            envvar="DILIGENCE_LOG_FORMAT",
        ),
    ] = "console",
) -> None:
    """Diligence - resilience and consolidation core for research jobs."""
    level = log_level.upper()
    if level not in _LOG_LEVELS:
        raise typer.BadParameter(
            f"must be one of {', '.join(_LOG_LEVELS)}", param_hint="--log-level"
        )
    if log_format not in _LOG_FORMATS:
        raise typer.BadParameter(
            f"must be one of {', '.join(_LOG_FORMATS)}", param_hint="--log-format"
        )
    configure_logging(
        level=cast(LogLevel, level),
        format=cast(LogFormat, log_format),
    )


app.command()(classify)
app.command()(fallback)
app.command()(validate)
app.command()(config)
app.command()(presets)


__all__ = ["app", "console", "main"]
