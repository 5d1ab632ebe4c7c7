"""
Structured logging setup.
"""
import logging
import sys

import structlog

from rightsizer.config import Settings


def configure_logging(settings: Settings) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        settings: Application settings (log level and renderer choice)
    """
    level = logging.getLevelName(settings.log_level)
    if not isinstance(level, int):
        level = logging.INFO

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
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # APScheduler and SQLAlchemy log through the stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
