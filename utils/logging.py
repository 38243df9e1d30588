"""
structlog setup shared by the scripts and any embedding service.

Modules never configure logging themselves; they call
``structlog.get_logger()`` and log snake_case events with key/value
fields. Whoever owns the process calls ``configure_logging`` once.
"""
from __future__ import annotations

import logging
import sys

import structlog

from config.settings import Settings, get_settings


def configure_logging(settings: Settings = None, stream=None) -> None:
    settings = settings or get_settings()
    level = getattr(logging, str(settings.log_level).upper(), logging.INFO)

    if settings.log_json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stderr),
        cache_logger_on_first_use=False,
    )
