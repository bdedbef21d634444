"""structlog configuration.

The stdio transport owns stdout, so every log line goes to stderr.
"""

from __future__ import annotations

import logging
import sys

import structlog

LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


def configure_logging(level: str = "info", json_logs: bool = False) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Minimum level name (case-insensitive)
        json_logs: Render JSON lines instead of console output

    Raises:
        ValueError: If ``level`` is not a known level name
    """
    normalized = level.lower()
    if normalized not in LOG_LEVELS:
        raise ValueError(f"Unknown log level: {level}")
    numeric_level = getattr(logging, normalized.upper())

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=numeric_level,
        force=True,
    )

    renderer: structlog.types.Processor
    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def ensure_logging(level: str = "info", json_logs: bool = False) -> bool:
    """Configure logging unless the application already did.

    structlog's default logger prints to stdout, which would corrupt the
    stdio transport.

    Returns:
        True if this call configured logging
    """
    if structlog.is_configured():
        return False
    configure_logging(level, json_logs)
    return True
