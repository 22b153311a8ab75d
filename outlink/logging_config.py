"""Logging configuration for the Outlink identity service.

Routes stdlib and structlog output through one console handler, with
key/value rendering in development and JSON lines otherwise.
"""

import logging
import sys
from typing import Literal

import structlog

from outlink.config import get_settings

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = [
    "alembic",
    "alembic.runtime.migration",
    "asyncio",
    "httpcore",
    "httpx",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
]


def suppress_noisy_loggers() -> None:
    """Raise noisy third-party loggers to WARNING."""
    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
    *,
    json: bool | None = None,
) -> None:
    """Configure application logging.

    Args:
        level: Override log level (defaults to settings.log_level)
        json: Force JSON rendering (defaults to settings.log_json)
    """
    settings = get_settings()
    log_level = getattr(logging, level or settings.log_level)
    render_json = settings.log_json if json is None else json

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)

    renderer = (
        structlog.processors.JSONRenderer()
        if render_json
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )

    suppress_noisy_loggers()
