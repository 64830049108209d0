"""Structured logging for the API, the Celery workers and the engine.

Engine, service and connector modules log through structlog; Celery tasks,
routes and websockets use the stdlib ``logging`` module. Both end up in
one stdout handler, rendered as JSON or as colored console text.
Log lines emitted while an execution runs carry its ``execution_id`` and
``workflow_id``.
"""

import logging
import sys
from typing import Optional

import structlog
from app.config import Settings, get_settings

# Library loggers and the level they are held at.
QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "celery": logging.INFO,
}


def shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def select_renderer(settings: Settings):
    """Console output for development or ``LOG_FORMAT=text``, JSON otherwise."""
    if settings.is_development or settings.LOG_FORMAT == "text":
        return structlog.dev.ConsoleRenderer(colors=True)
    return structlog.processors.JSONRenderer()


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Route structlog and stdlib logging through one stdout handler."""
    settings = settings or get_settings()
    pre_chain = shared_processors()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                select_renderer(settings),
            ],
            foreign_pre_chain=pre_chain,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
    # SQL statements only when echo is on
    logging.getLogger("sqlalchemy.engine").setLevel(logging.DEBUG if settings.SQLALCHEMY_ECHO else logging.WARNING)


def bind_execution_context(execution_id: str, workflow_id: Optional[str] = None) -> None:
    """Attach execution identifiers to every log line emitted in this context."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        execution_id=execution_id,
        workflow_id=workflow_id,
    )


def clear_execution_context() -> None:
    structlog.contextvars.clear_contextvars()
