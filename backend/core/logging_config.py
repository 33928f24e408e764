"""Structured logging configuration using structlog.

Provides consistent, machine-parsable JSON logs in production
and human-readable colored output in development. Every entry carries
the engine name and environment; executions add ``execution_id`` /
``step_id`` through bound loggers.
"""

import logging
import sys
from typing import Optional

import structlog
from app.config import Settings, get_settings

# Third-party loggers kept at WARNING unless explicitly enabled
_QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite")


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Configure structured logging for the engine process.

    In development (or LOG_FORMAT=text): colored console output
    Otherwise: JSON-formatted logs for log aggregation
    """
    settings = settings or get_settings()

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.is_development or settings.LOG_FORMAT == "text":
        renderer = structlog.dev.ConsoleRenderer(colors=settings.is_development)
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Engine modules using stdlib logging go through the same renderer
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.SQLALCHEMY_ECHO else logging.WARNING
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if settings.DEBUG else logging.WARNING)

    structlog.contextvars.bind_contextvars(
        app=settings.APP_NAME,
        environment=settings.ENVIRONMENT,
    )
