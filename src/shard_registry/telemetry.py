"""structlog setup for shard-registry, correlated with OpenTelemetry traces.

Logs emitted inside an active span carry its trace_id and span_id, so a
registry request's log lines can be joined with its trace.

Example:
    >>> from shard_registry.telemetry import configure_logging
    >>> configure_logging(log_level="DEBUG", json_output=False)
"""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from typing import Any

import structlog
from opentelemetry import trace
from opentelemetry.trace import INVALID_SPAN_ID, INVALID_TRACE_ID

EventDict = MutableMapping[str, Any]

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def add_trace_context(
    logger: Any,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Copy the current span's ids onto a log event.

    Outside a valid span the event passes through untouched.

    Args:
        logger: Unused; part of the structlog processor signature.
        method_name: Unused; part of the structlog processor signature.
        event_dict: Event being processed.

    Returns:
        ``event_dict``, with ``trace_id`` and ``span_id`` set when a span is active.
    """
    ctx = trace.get_current_span().get_span_context()

    if ctx.trace_id != INVALID_TRACE_ID and ctx.span_id != INVALID_SPAN_ID:
        # 32-char hex trace_id, 16-char hex span_id
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")

    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
) -> None:
    """Install the processor chain used by registry and sync logging.

    Args:
        log_level: Lowest level emitted; any name in LOG_LEVELS, case-insensitive.
        json_output: Render JSON lines when True, human-readable console output otherwise.

    Raises:
        ValueError: If log_level is not a known level name.
    """
    level_name = log_level.upper()
    if level_name not in LOG_LEVELS:
        raise ValueError(f"Invalid log level: {log_level!r}. Expected one of {', '.join(LOG_LEVELS)}")

    renderer: Any = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            add_trace_context,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level_name)),
        cache_logger_on_first_use=False,
    )


__all__ = [
    "LOG_LEVELS",
    "add_trace_context",
    "configure_logging",
]
