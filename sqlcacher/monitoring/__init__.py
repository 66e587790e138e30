"""
sqlcacher Monitoring

Structured logging helpers.
"""

from sqlcacher.monitoring.logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    log_duration,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "log_duration",
]
