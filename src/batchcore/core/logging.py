"""
Structured logging for batch-core.

Every module logs through ``get_logger(__name__)`` with an event name and
keyword fields (``logger.info("step.complete", step=..., write_count=...)``).
The engine binds ``job`` and ``execution_id`` for the duration of a run, so
all lines emitted by steps, readers and writers carry them, including those
from split worker threads (the context is copied into each flow).

Output:
    JSON lines (``@timestamp``, ``log.level``, ``service.name``, ``event``,
    fields) when ``json_format`` is true or the stream is not a terminal;
    a console renderer otherwise.

Examples:
    >>> from batchcore.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG")
    >>> logger = get_logger(__name__)
    >>> with LogContext(job="simpleJob", execution_id="abc"):
    ...     logger.info("step.start", step="simpleStep1")

Tags:
    logging, structlog, observability, batch-core
"""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

DEFAULT_SERVICE = "batch-core"


class _ServiceName:
    """Processor stamping ``service.name`` on every event."""

    def __init__(self, service: str) -> None:
        self.service = service

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service.name", self.service)
        return event_dict


def _ecs_field_names(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for ours, theirs in (("timestamp", "@timestamp"), ("level", "log.level")):
        if ours in event_dict:
            event_dict[theirs] = event_dict.pop(ours)
    return event_dict


def _processor_chain(service: str, json_format: bool, add_timestamp: bool, colors: bool) -> list[Processor]:
    chain: list[Processor] = []
    if add_timestamp:
        chain.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    chain += [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _ServiceName(service),
    ]
    if json_format:
        chain += [
            structlog.processors.format_exc_info,
            _ecs_field_names,
            structlog.processors.JSONRenderer(),
        ]
    else:
        chain.append(structlog.dev.ConsoleRenderer(colors=colors))
    return chain


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = DEFAULT_SERVICE,
    add_timestamp: bool = True,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog (and stdlib logging) for the process.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_format: True for JSON, False for console, None to pick JSON
            unless ``stream`` is a terminal
        service: Value of the ``service.name`` field
        add_timestamp: Include an ISO-8601 UTC timestamp
        stream: Destination (default stdout; the CLI passes stderr)
    """
    stream = stream or sys.stdout
    tty = stream.isatty()
    if json_format is None:
        json_format = not tty
    numeric_level = logging.getLevelName(level.upper())

    structlog.configure(
        processors=_processor_chain(service, json_format, add_timestamp, colors=tty),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=False,
    )
    logging.basicConfig(format="%(message)s", stream=stream, level=numeric_level)


def get_logger(name: str | None = None) -> Any:
    """Structured logger, usually ``get_logger(__name__)``."""
    return structlog.get_logger(name)


class LogContext:
    """Bind fields to every log line emitted inside the ``with`` block.

    Example:
        with LogContext(job="simpleJob", execution_id="abc123"):
            logger.info("step.start")
    """

    def __init__(self, **fields: Any):
        self._fields = fields
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> LogContext:
        self._tokens = structlog.contextvars.bind_contextvars(**self._fields)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)


__all__ = [
    "DEFAULT_SERVICE",
    "LogContext",
    "configure_logging",
    "get_logger",
]
