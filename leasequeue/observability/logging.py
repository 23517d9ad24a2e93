"""
Logging for queue processes.

Queue modules log through the standard library with ``extra`` fields.
setup_logging routes those records through structlog so they come out
as JSON lines (or coloured console lines) carrying trace ids.
"""

import logging
import sys
from typing import Any

import structlog
from opentelemetry import trace

from leasequeue.config import get_settings


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Attach the current trace and span ids when a span is recording."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def setup_logging(log_level: str | None = None, log_format: str | None = None) -> None:
    """
    Install a single stdout handler on the root logger.

    Args:
        log_level: Overrides the log_level setting.
        log_format: "json" or "console"; overrides the log_format setting.
    """
    settings = get_settings()
    level_name = log_level or settings.log_level
    output = log_format or settings.log_format

    level = getattr(logging, level_name.upper(), logging.INFO)

    # ExtraAdder lifts stdlib ``extra`` fields into the event
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_trace_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    if output == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    # Third-party loggers stay at WARNING
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def bind_context(**kwargs: Any) -> None:
    """Bind fields (e.g. worker_id) to every later log line of this context."""
    structlog.contextvars.bind_contextvars(**kwargs)
