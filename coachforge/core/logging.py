import logging
import sys
from typing import Any

import structlog

from coachforge.config.settings import get_settings

# Chatty client libraries that log every request at INFO.
QUIET_LOGGERS = ("httpx", "httpcore")


def configure_logging():
    """
    Configure structured JSON logging.

    Modules log through the stdlib ``logging`` module; those records are
    rendered by the same structlog pipeline, so ids bound with
    ``add_log_context`` (request id, job id) appear on every line.
    """
    settings = get_settings()
    level = logging.DEBUG if settings.debug else logging.INFO

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
    ))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def add_log_context(**kwargs: Any) -> None:
    """Bind fields to every log line in the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_log_context() -> None:
    structlog.contextvars.clear_contextvars()
