"""Structured logging configuration using structlog.

Every event carries the command being run and, once known, the build
context and Dockerfile it analyses. Events emitted inside a traced phase
(parse, lint, scan, plan) also carry the span ids. Log output goes to
stderr so the report on stdout stays clean.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Optional, Union

import structlog
from opentelemetry import trace
from structlog.types import EventDict, Processor


def add_app_context(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Tag entries with the tool name."""
    event_dict["app"] = "layerwise"
    return event_dict


def add_phase_span(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add the ids of the recording analysis span, if any.

    Args:
        logger: The logger instance
        method_name: The logging method name
        event_dict: The event dictionary

    Returns:
        Updated event dictionary with trace context
    """
    span = trace.get_current_span()
    if span.is_recording():
        span_context = span.get_span_context()
        event_dict["trace_id"] = format(span_context.trace_id, "032x")
        event_dict["span_id"] = format(span_context.span_id, "016x")
    return event_dict


def configure_logging(
    log_level: str = "WARNING",
    json_logs: bool = False,
    service_name: Optional[str] = None,
) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Whether to output logs in JSON format
        service_name: Name of the component for log tagging
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_app_context,
        add_phase_span,
    ]

    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, log_level.upper(), logging.WARNING)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level,
    )
    logging.getLogger().setLevel(level)

    if service_name:
        structlog.contextvars.bind_contextvars(service=service_name)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context variables to all subsequent log entries in this context.

    Args:
        **kwargs: Context key-value pairs to bind
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def bind_target(context_dir: Union[str, Path], dockerfile: Union[str, Path]) -> None:
    """Bind the analysed build context and Dockerfile to subsequent entries."""
    structlog.contextvars.bind_contextvars(context=str(context_dir), dockerfile=str(dockerfile))


def clear_context() -> None:
    """Clear all context variables."""
    structlog.contextvars.clear_contextvars()
