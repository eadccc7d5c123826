"""
Structured logging module.

Provides JSON and console formatting with context propagation across
asyncio tasks, plus helpers for logging with structured fields.
"""

from core.logging.context import clear_log_context, get_log_context, set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.setup import NOISY_LOGGERS, setup_logging
from core.logging.utilities import (
    LoggedClass,
    get_logger,
    log_exception,
    log_with_context,
    logged_operation,
)

__all__ = [
    "set_log_context",
    "get_log_context",
    "clear_log_context",
    "JSONFormatter",
    "ConsoleFormatter",
    "setup_logging",
    "NOISY_LOGGERS",
    "get_logger",
    "log_with_context",
    "log_exception",
    "logged_operation",
    "LoggedClass",
]
