"""
Structured logging setup (structlog)

Library code only calls ``structlog.get_logger()``; entry points (scripts,
workers) call ``configure_logging`` once at startup.
"""
import logging

import structlog


def configure_logging(level: str = "INFO", json: bool = True) -> None:
    """
    Configure structlog processor chain.

    Args:
        level: Minimum log level name (DEBUG, INFO, ...)
        json: Render JSON lines (production) or colored console output (dev)
    """
    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
