"""
Structured logging configuration for the immersive audio pipeline.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from immersive_audio.core.config import settings


def _shared_processors() -> list[Processor]:
    """Processors applied before rendering, regardless of output format."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging() -> None:
    """Configure structured logging for the application."""

    if settings.log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:  # console format
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=_shared_processors() + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Configured logger instance

    Example:
        logger = get_logger(__name__)
        logger.info("playback_started", frame_count=24000, rate=1.0)
    """
    return structlog.get_logger(name)


def bind_session(session_id: str) -> None:
    """Attach a playback session id to every log line on this context."""
    structlog.contextvars.bind_contextvars(session_id=session_id)


def clear_session() -> None:
    """Drop the playback session id from the logging context."""
    structlog.contextvars.unbind_contextvars("session_id")


# Initialize logging on module import
configure_logging()
