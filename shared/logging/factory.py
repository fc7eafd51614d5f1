"""
Logging factory for structured, stdlib-backed logging.
"""

import logging
import sys

import structlog


SERVICE_NAME = "frete-audit"


def get_logger(name: str):
    """
    Get a structured logger.

    The logger is a lazy proxy, so module-level loggers pick up the
    configuration applied later by configure_logging().

    Args:
        name: Logger name (usually __name__)
    """
    return structlog.get_logger(name, service=SERVICE_NAME)


def configure_logging(log_level: str = "INFO", json_logs: bool = False) -> None:
    """
    Configure structlog on top of the standard library logging module.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Render JSON lines instead of key/value pairs
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level, force=True)

    if json_logs:
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.processors.KeyValueRenderer(
            key_order=["timestamp", "level", "event", "logger"]
        )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
