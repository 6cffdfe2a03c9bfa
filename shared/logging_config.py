"""
Structured Logging Setup

Configures structlog from the shared settings. Every module obtains its
logger with ``structlog.get_logger(__name__)``; this only decides the
renderer and the level filter.
"""

import logging

import structlog

from shared.config import Settings, settings


def configure_logging(config: Settings | None = None) -> None:
    """
    Configure structlog processors and renderer.

    Args:
        config: Settings to read log level/format from (defaults to global settings)
    """
    config = config or settings
    level = logging.getLevelName(config.log_level)

    if config.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
