"""
Logging setup
=============

structlog is configured once per process from the app factory.
Modules grab their own logger with ``structlog.get_logger(__name__)``.
"""

import logging

import structlog


def configure_logging(level='INFO', json=False):
    """Configure structlog with a level filter and console or JSON output."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt='iso'),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=False,
    )
