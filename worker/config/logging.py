import logging
import sys
from typing import Any

import structlog

from .settings import Settings, settings

# Libraries that log every query or request at INFO
NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "aiosqlite")


def setup_logging(app_settings: Settings | None = None) -> None:
    """Configure structured logging with structlog."""
    app_settings = app_settings or settings
    level = getattr(logging, app_settings.log_level)
    pretty = app_settings.debug and app_settings.environment != "production"

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
    ]
    if pretty:
        processors += [
            structlog.processors.CallsiteParameterAdder(
                parameters=[structlog.processors.CallsiteParameter.FUNC_NAME]
            ),
            structlog.dev.ConsoleRenderer(),
        ]
    else:
        processors += [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def add_request_context(request_id: str, **context: Any) -> None:
    """Replace the log context with the current request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **context)


def bind_job_context(job_id: str, kind: str) -> None:
    """
    Bind the job being processed into the log context.

    Each job runs in its own task with a copied context, so the binding does
    not leak into the scan loop or other jobs.
    """
    structlog.contextvars.unbind_contextvars("request_id", "method", "path")
    structlog.contextvars.bind_contextvars(job_id=job_id, job_kind=kind)
