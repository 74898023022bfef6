"""Structured logging configuration.

structlog renders JSON in production and console output elsewhere, routed
through stdlib logging at ``LOG_LEVEL``. Every event also carries the
contextvars bound for the current call: the orchestrator binds a
``request_id`` per execute(), so the resolver, matcher, and sync lines for
one batch can be grouped.
"""

from __future__ import annotations

import logging

import structlog

from src.crmguard.config import Environment, Settings, get_settings

# Their INFO lines repeat every SOQL request URL and SQL statement.
QUIET_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite")


def build_processors(environment: Environment) -> list:
    """Processor chain ending in the renderer for ``environment``."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if environment == Environment.production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    return processors


def configure_structlog(settings: Settings | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        settings: Defaults to get_settings(). An unknown LOG_LEVEL falls
            back to INFO.
    """
    settings = settings or get_settings()
    level = logging.getLevelNamesMapping().get(settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s")
    logging.getLogger().setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=build_processors(settings.ENVIRONMENT),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
