"""
Structured logging for refresh-observer.

Provides context-aware logging with credential masking.
"""

from __future__ import annotations

import json
import logging
import re
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, ClassVar


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def to_logging_level(self) -> int:
        """Convert to standard logging level."""
        return getattr(logging, self.value)


@dataclass(frozen=True)
class LogContext:
    """Fields attached to every record logged while a request is in progress.

    Attributes:
        request_id: Identifier of the logical request
        method: HTTP method of the request
        url: Target URL of the request
        retry_count: Refresh-triggered retries made so far
        extra: Additional context fields
    """

    request_id: str | None = None
    method: str | None = None
    url: str | None = None
    retry_count: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Non-empty fields, with ``extra`` flattened in."""
        result = {
            name: value
            for name, value in (
                ("request_id", self.request_id),
                ("method", self.method),
                ("url", self.url),
                ("retry_count", self.retry_count),
            )
            if value is not None and value != ""
        }
        result.update(self.extra)
        return result

    def evolve(self, **changes: Any) -> LogContext:
        """Copy with some named fields replaced."""
        return replace(self, **changes)

    def with_extra(self, **kwargs: Any) -> LogContext:
        """Copy with additional free-form fields."""
        return replace(self, extra={**self.extra, **kwargs})


_EMPTY_CONTEXT = LogContext()

# Request-scoped context; each asyncio task sees its own value.
_log_context: ContextVar[LogContext] = ContextVar(
    "refresh_observer_log_context", default=_EMPTY_CONTEXT
)


def get_log_context() -> LogContext:
    """Context of the request currently being processed, if any."""
    return _log_context.get()


def set_log_context(context: LogContext) -> Token[LogContext]:
    """Install a context for the current task.

    Returns:
        Token for :func:`reset_log_context`
    """
    return _log_context.set(context)


def reset_log_context(token: Token[LogContext]) -> None:
    """Restore the context that was active before ``token`` was created."""
    _log_context.reset(token)


def clear_log_context() -> None:
    """Drop any context for the current task."""
    _log_context.set(_EMPTY_CONTEXT)


@contextmanager
def bound_log_context(context: LogContext) -> Iterator[LogContext]:
    """Install ``context`` for the duration of the block."""
    token = set_log_context(context)
    try:
        yield context
    finally:
        reset_log_context(token)


class SensitiveDataMasker:
    """Masks credentials in log messages."""

    DEFAULT_PATTERNS: ClassVar[list[tuple[str, str]]] = [
        # Bearer tokens
        (r"(Bearer\s+)([^\s\"']+)", r"\1***REDACTED***"),
        # Authorization headers
        (r"(Authorization[\"']?\s*[:=]\s*[\"']?)([^\"'\s]+)", r"\1***REDACTED***"),
        # OAuth token fields
        (r"((?:access|refresh|id)_token[\"']?\s*[:=]\s*[\"']?)([^\"'\s,}]+)", r"\1***REDACTED***"),
        # Query-string secrets
        (r"((?:client_secret|password)=)([^&\s]+)", r"\1***REDACTED***"),
    ]

    def __init__(self, patterns: list[tuple[str, str]] | None = None) -> None:
        """Initialize masker with patterns.

        Args:
            patterns: List of (pattern, replacement) tuples
        """
        self._patterns = [
            (re.compile(p, re.IGNORECASE), r)
            for p, r in (patterns or self.DEFAULT_PATTERNS)
        ]

    def mask(self, text: str) -> str:
        """Mask sensitive data in text."""
        result = text
        for pattern, replacement in self._patterns:
            result = pattern.sub(replacement, result)
        return result

    def mask_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        """Mask sensitive data in dictionary.

        Keys that look like credentials are redacted wholesale, string values
        are pattern-masked, nested dicts and lists of dicts are walked.
        """
        result: dict[str, Any] = {}
        for key, value in data.items():
            key_lower = key.lower()
            if any(
                sensitive in key_lower
                for sensitive in ["token", "secret", "password", "authorization", "credential"]
            ):
                result[key] = "***REDACTED***"
            elif isinstance(value, str):
                result[key] = self.mask(value)
            elif isinstance(value, dict):
                result[key] = self.mask_dict(value)
            elif isinstance(value, list):
                result[key] = [
                    self.mask_dict(v) if isinstance(v, dict) else v for v in value
                ]
            else:
                result[key] = value
        return result


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Key/value pairs passed to an :class:`ObserverLogger` call."""
    return dict(getattr(record, "extra_fields", None) or {})


class JsonFormatter(logging.Formatter):
    """One JSON object per record.

    The active :class:`LogContext` is nested under ``"context"``; fields
    passed to the log call sit at the top level.
    """

    def __init__(
        self,
        masker: SensitiveDataMasker | None = None,
        include_timestamp: bool = True,
    ) -> None:
        super().__init__()
        self._masker = masker or SensitiveDataMasker()
        self._include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "message": self._masker.mask(record.getMessage()),
        }
        if self._include_timestamp:
            stamp = time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created))
            payload["timestamp"] = f"{stamp}.{int(record.msecs):03d}Z"

        context = get_log_context().to_dict()
        if context:
            payload["context"] = self._masker.mask_dict(context)
        payload.update(self._masker.mask_dict(_record_fields(record)))

        if record.exc_info:
            payload["exception"] = self._masker.mask(self.formatException(record.exc_info))

        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """``time | LEVEL | logger | message | key=value ...`` lines."""

    def __init__(
        self,
        masker: SensitiveDataMasker | None = None,
        include_context: bool = True,
    ) -> None:
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self._masker = masker or SensitiveDataMasker()
        self._include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        line = self._masker.mask(super().format(record))

        fields = get_log_context().to_dict() if self._include_context else {}
        fields.update(_record_fields(record))
        if not fields:
            return line
        masked = self._masker.mask_dict(fields)
        return line + " | " + " ".join(f"{key}={value}" for key, value in masked.items())


class ObserverLogger:
    """Logger for refresh-observer with structured logging support.

    Example:
        >>> logger = ObserverLogger.get_logger("refresh_observer.observer")
        >>> logger.info("Credential refresh completed", waiters=3)
    """

    _loggers: ClassVar[dict[str, logging.Logger]] = {}
    _level: ClassVar[LogLevel] = LogLevel.INFO
    _formatter: ClassVar[logging.Formatter | None] = None
    _handler: ClassVar[logging.Handler | None] = None

    @classmethod
    def configure(
        cls,
        level: LogLevel = LogLevel.INFO,
        format: str = "json",
        stream: Any = None,
        masker: SensitiveDataMasker | None = None,
    ) -> None:
        """Configure global logging settings.

        Args:
            level: Log level
            format: Output format ('json' or 'text')
            stream: Output stream (default: stderr)
            masker: Sensitive data masker
        """
        cls._level = level

        if format == "json":
            cls._formatter = JsonFormatter(masker=masker)
        else:
            cls._formatter = TextFormatter(masker=masker)

        cls._handler = logging.StreamHandler(stream or sys.stderr)
        cls._handler.setFormatter(cls._formatter)
        cls._handler.setLevel(level.to_logging_level())

        for logger in cls._loggers.values():
            logger.handlers.clear()
            logger.addHandler(cls._handler)
            logger.setLevel(level.to_logging_level())

    @classmethod
    def get_logger(cls, name: str) -> ObserverLogger:
        """Get or create a logger.

        Args:
            name: Logger name

        Returns:
            Logger instance
        """
        if name not in cls._loggers:
            logger = logging.getLogger(name)
            logger.setLevel(cls._level.to_logging_level())

            if cls._handler:
                logger.handlers.clear()
                logger.addHandler(cls._handler)
            elif not logger.handlers:
                handler = logging.StreamHandler(sys.stderr)
                handler.setFormatter(TextFormatter())
                logger.addHandler(handler)

            logger.propagate = False
            cls._loggers[name] = logger

        return cls(cls._loggers[name])

    def __init__(self, logger: logging.Logger) -> None:
        """Initialize with underlying logger."""
        self._logger = logger

    @property
    def raw(self) -> logging.Logger:
        """Underlying stdlib logger."""
        return self._logger

    def _log(
        self, level: int, msg: str, exc_info: bool = False, **kwargs: Any
    ) -> None:
        extra = {"extra_fields": kwargs} if kwargs else {}
        self._logger.log(level, msg, exc_info=exc_info, extra=extra)

    def debug(self, msg: str, **kwargs: Any) -> None:
        """Log debug message."""
        self._log(logging.DEBUG, msg, **kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        """Log info message."""
        self._log(logging.INFO, msg, **kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        """Log warning message."""
        self._log(logging.WARNING, msg, **kwargs)

    def error(self, msg: str, exc_info: bool = False, **kwargs: Any) -> None:
        """Log error message."""
        self._log(logging.ERROR, msg, exc_info=exc_info, **kwargs)

    def exception(self, msg: str, **kwargs: Any) -> None:
        """Log exception with traceback."""
        self._log(logging.ERROR, msg, exc_info=True, **kwargs)


def get_logger(name: str) -> ObserverLogger:
    """Get a logger instance."""
    return ObserverLogger.get_logger(name)
