"""Structured logging setup shared by the workflow, entitlement and HTTP layers."""

import logging
import sys
from typing import Any, Optional

import structlog

from .config import settings

# Pillow logs every plugin it tries at DEBUG, which drowns the workflow events.
_NOISY_LOGGERS = ("PIL", "sqlalchemy.engine")


def configure_logging(level: int | str | None = None, *, json_logs: bool | None = None) -> None:
    """Configure structlog on top of stdlib logging.

    JSON lines are emitted unless ``json_logs`` is false, in which case the
    console renderer is used; by default JSON is chosen outside of debug mode.
    """

    log_level = level or (logging.DEBUG if settings.debug else logging.INFO)
    render_json = (not settings.debug) if json_logs is None else json_logs
    renderer: Any = (
        structlog.processors.JSONRenderer() if render_json else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=log_level, format="%(message)s", stream=sys.stdout)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Create a structured logger."""

    return structlog.get_logger(name or "photo_converter")


def bind_session(session_id: str) -> None:
    """Attach ``session_id`` to every log line emitted from the current context."""

    structlog.contextvars.bind_contextvars(session_id=session_id)
