"""
Structured logging setup for scribequeue.

Library modules only call ``structlog.get_logger(__name__)``; applications
call ``configure_logging()`` once at start-up to pick the renderer.
"""

from __future__ import annotations

import logging

import structlog

from scribequeue.config import QueueSettings


def configure_logging(settings: QueueSettings | None = None) -> None:
    """Configure structlog: console output by default, JSON when json_logs is set."""
    settings = settings or QueueSettings()

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.json_logs:
        processors.extend(
            [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
        )
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None):
    return structlog.get_logger(name or __name__)
