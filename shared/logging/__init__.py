"""
Structured Logging

structlog-based logging shared by the audit and reconciliation pipelines.
"""

from .factory import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]
