"""
Telemetry - structured logging with credential masking.
"""

from refresh_observer.telemetry.logger import (
    JsonFormatter,
    LogContext,
    LogLevel,
    ObserverLogger,
    SensitiveDataMasker,
    TextFormatter,
    bound_log_context,
    clear_log_context,
    get_log_context,
    get_logger,
    reset_log_context,
    set_log_context,
)

__all__ = [
    "JsonFormatter",
    "LogContext",
    "LogLevel",
    "ObserverLogger",
    "SensitiveDataMasker",
    "TextFormatter",
    "bound_log_context",
    "clear_log_context",
    "get_log_context",
    "get_logger",
    "reset_log_context",
    "set_log_context",
]
