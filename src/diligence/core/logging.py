"""Structured logging for diligence.

All components log through structlog with dotted snake_case event names
(``failure_handler.retry_scheduled``). Job correlation fields come from an
ExecutionContext held in a ContextVar, so concurrently running jobs never
see each other's fields. Values under sensitive keys are redacted before
rendering.

Example usage:
    from diligence.core.logging import (
        ExecutionContext, configure_logging, get_logger, with_context,
    )

    configure_logging(level="INFO", format="json", file_path=Path("diligence.log"))
    logger = get_logger("service")

    with with_context(ExecutionContext(job_id="job-123").with_iteration(2)):
        logger.info("iteration.started")  # carries job_id, run_id, iteration_num
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "apikey",
    "api-key",
    "authorization",
    "bearer",
    "credential",
    "password",
    "secret",
    "token",
})
"""Substrings that mark a key's value as unsafe to log."""

REDACTED = "[REDACTED]"

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console", "both"]


@dataclass(frozen=True)
class ExecutionContext:
    """Correlation fields attached to every log entry of one job run.

    Attributes:
        job_id: Research job identifier.
        run_id: Identifier for this pass over the job.
        iteration_num: Iteration being executed, if any.
        endpoint: Provider endpoint key being called, if any.
        component: Component doing the work.
    """

    job_id: str
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    iteration_num: int | None = None
    endpoint: str | None = None
    component: str = "unknown"

    def with_iteration(self, iteration_num: int) -> ExecutionContext:
        return replace(self, iteration_num=iteration_num)

    def with_endpoint(self, endpoint: str) -> ExecutionContext:
        return replace(self, endpoint=endpoint)

    def with_component(self, component: str) -> ExecutionContext:
        return replace(self, component=component)

    def to_dict(self) -> dict[str, Any]:
        """Fields for a log entry; unset optional fields are left out."""
        return {k: v for k, v in asdict(self).items() if v is not None}


_active_context: ContextVar[ExecutionContext | None] = ContextVar(
    "diligence_execution_context", default=None
)


def get_current_context() -> ExecutionContext | None:
    return _active_context.get()


def set_context(ctx: ExecutionContext) -> None:
    """Install a context until clear_context(); prefer with_context()."""
    _active_context.set(ctx)


def clear_context() -> None:
    _active_context.set(None)


@contextmanager
def with_context(ctx: ExecutionContext) -> Iterator[ExecutionContext]:
    """Install ``ctx`` for the block, restoring the previous context after."""
    token = _active_context.set(ctx)
    try:
        yield ctx
    finally:
        _active_context.reset(token)


# =============================================================================
# Processors
# =============================================================================


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(pattern in lowered for pattern in SENSITIVE_PATTERNS)


def _redact(mapping: Mapping[str, Any]) -> dict[str, Any]:
    return {
        key: REDACTED if _is_sensitive(str(key)) else value
        for key, value in mapping.items()
    }


def redact_sensitive(_logger: WrappedLogger, _method: str, event: EventDict) -> EventDict:
    """Redact sensitive keys at the top level and one mapping deep."""
    cleaned = _redact(event)
    for key, value in cleaned.items():
        if isinstance(value, Mapping):
            cleaned[key] = _redact(value)
    return cleaned


def inject_context(_logger: WrappedLogger, _method: str, event: EventDict) -> EventDict:
    """Fill in ExecutionContext fields the call did not bind itself."""
    ctx = _active_context.get()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            event.setdefault(key, value)
    return event


def add_utc_timestamp(_logger: WrappedLogger, _method: str, event: EventDict) -> EventDict:
    event["timestamp"] = datetime.now(UTC).isoformat()
    return event


# =============================================================================
# Loggers
# =============================================================================


class DiligenceLogger:
    """Logger bound to a component name.

    The structlog logger is looked up on every call, so module-level
    loggers honour configure_logging() calls made after import.
    """

    def __init__(self, component: str, **context: Any) -> None:
        self.component = component
        self._bound: dict[str, Any] = {"component": component, **context}

    def _with_bound(self, bound: dict[str, Any]) -> DiligenceLogger:
        clone = DiligenceLogger(self.component)
        clone._bound = bound
        return clone

    def bind(self, **context: Any) -> DiligenceLogger:
        return self._with_bound({**self._bound, **context})

    def unbind(self, *keys: str) -> DiligenceLogger:
        return self._with_bound({k: v for k, v in self._bound.items() if k not in keys})

    def _emit(self, method: str, event: str, fields: dict[str, Any]) -> None:
        logger = structlog.get_logger(f"diligence.{self.component}").bind(**self._bound)
        getattr(logger, method)(event, **fields)

    def debug(self, event: str, **fields: Any) -> None:
        self._emit("debug", event, fields)

    def info(self, event: str, **fields: Any) -> None:
        self._emit("info", event, fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._emit("warning", event, fields)

    def error(self, event: str, **fields: Any) -> None:
        self._emit("error", event, fields)

    def exception(self, event: str, **fields: Any) -> None:
        """Log at ERROR with the active exception's traceback."""
        self._emit("exception", event, fields)


def get_logger(component: str, **context: Any) -> DiligenceLogger:
    """Logger for a component, e.g. ``get_logger("circuit_breaker")``."""
    return DiligenceLogger(component, **context)


# =============================================================================
# Configuration
# =============================================================================


def _handlers(
    format: LogFormat,  # noqa: A002
    file_path: Path | None,
    max_file_size_mb: int,
    backup_count: int,
) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if format != "json":
        handlers.append(logging.StreamHandler(sys.stderr))
    if format != "console":
        if file_path is None:
            handlers.append(logging.StreamHandler(sys.stdout))
        else:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(
                RotatingFileHandler(
                    file_path,
                    maxBytes=max_file_size_mb * 1024 * 1024,
                    backupCount=backup_count,
                    encoding="utf-8",
                )
            )
    return handlers


def configure_logging(
    level: LogLevel = "INFO",
    format: LogFormat = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 50,
    backup_count: int = 5,
    include_timestamps: bool = True,
) -> None:
    """Route structlog through the stdlib root logger.

    Args:
        level: Minimum level emitted.
        format: ``console`` renders for humans on stderr; ``json`` writes
            JSON lines to file_path (stdout if none); ``both`` writes plain
            console lines to stderr and to file_path.
        file_path: Rotating log file; required for ``both``.
        max_file_size_mb: Size at which the file rotates.
        backup_count: Rotated files kept.
        include_timestamps: Add an ISO8601 UTC ``timestamp`` field.

    Raises:
        ValueError: If format is ``both`` without a file_path.
    """
    if format == "both" and file_path is None:
        raise ValueError("file_path is required when format='both'")

    numeric_level = getattr(logging, level)
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    for handler in _handlers(format, file_path, max_file_size_mb, backup_count):
        handler.setLevel(numeric_level)
        root.addHandler(handler)
    root.setLevel(numeric_level)

    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if format == "json"
        else structlog.dev.ConsoleRenderer(colors=format == "console")
    )
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        redact_sensitive,
        inject_context,
    ]
    if include_timestamps:
        processors.append(add_utc_timestamp)
    processors += [
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Loggers are resolved per call, so module-level ones see late config
        cache_logger_on_first_use=False,
    )


__all__ = [
    "DiligenceLogger",
    "ExecutionContext",
    "LogFormat",
    "LogLevel",
    "REDACTED",
    "SENSITIVE_PATTERNS",
    "add_utc_timestamp",
    "clear_context",
    "configure_logging",
    "get_current_context",
    "get_logger",
    "inject_context",
    "redact_sensitive",
    "set_context",
    "with_context",
]
