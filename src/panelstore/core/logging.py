"""
Structured logging for panelstore.

Every module logs through ``get_logger(__name__)`` with event-style
names (``migration.applied``, ``engine.reload.fallback``) and key/value
fields, so log aggregation can filter on table, step or engine.

Architecture:
    ::

        configure_logging(level="INFO", json_format=None, service="panelstore")
              │
              ▼
        structlog processor chain:
          1. TimeStamper(iso)
          2. merge_contextvars
          3. add_log_level, logger name
          4. service metadata
          5. ECS field names (JSON only)
          6. JSONRenderer  |  ConsoleRenderer (tty)

Examples:
    >>> from panelstore.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> log = get_logger(__name__)
    >>> log.info("engine.reload", engine="external", host="db.local")
"""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "panelstore"


def _add_logger_name(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Expose the ``logger_name`` bound by :func:`get_logger` as ``logger``."""
    if "logger_name" in event_dict:
        event_dict["logger"] = event_dict.pop("logger_name")
    return event_dict


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _elasticsearch_compatible(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Make field names Elasticsearch/ECS compatible."""
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")
    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "panelstore",
    stream: TextIO | None = None,
) -> None:
    """Configure structured logging for the process.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        stream: Destination for log lines (default stdout)
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not (stream or sys.stdout).isatty()

    shared_processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        _add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if json_format:
        shared_processors.append(_elasticsearch_compatible)
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        # Loggers are rebuilt per call so a reconfigured stream takes effect.
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stdout,
        level=getattr(logging, level.upper()),
    )


def get_logger(name: str | None = None) -> Any:
    """Get a lazy structlog logger carrying ``name`` as its ``logger`` field.

    ``logger`` itself cannot be an initial value: ``structlog.get_logger``
    forwards initial values to ``wrap_logger``, whose first parameter has
    that name.
    """
    if name:
        return structlog.get_logger(logger_name=name)
    return structlog.get_logger()


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs of this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


class LogContext:
    """Context manager for scoped logging context.

    Example:
        with LogContext(boot_id="abc123"):
            runner.apply_pending()
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "LogContext",
]
