"""错误基类：提供分层错误体系和结构化错误上下文。

Base error classes for refresh-observer.

Provides a layered error hierarchy:
- ObserverError: Base class for all library errors
- ConfigurationError: Invalid observer or client configuration
- RefreshError: The credential refresh handler failed
- RetryBudgetExhaustedError: A request kept failing after its allowed retries
- TransportError: HTTP/network errors
- RemoteError: HTTP error responses (status >= 400)
- RequestCancelledError: The request's cancel token fired
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import httpx

    from refresh_observer.client.cancel import CancelReason


@dataclass
class ErrorContext:
    """Structured error context for diagnostics.

    Provides actionable information for debugging and error handling.
    """

    details: dict[str, Any] = field(default_factory=dict)
    """Additional details about the error"""

    source: str | None = None
    """Error source (e.g., 'refresh', 'transport', 'remote')"""

    hint: str | None = None
    """Actionable hint for resolving the error"""

    def __str__(self) -> str:
        parts = []
        if self.source:
            parts.append(f"[{self.source}]")
        if self.hint:
            parts.append(f"(hint: {self.hint})")
        return " ".join(parts)


class ObserverError(Exception):
    """Base class for all refresh-observer errors.

    All errors from this library inherit from this class, making it easy
    to catch all library errors with a single except clause.

    Attributes:
        message: Human-readable error message
        context: Optional structured error context
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
    ) -> None:
        self.message = message
        self.context = context or ErrorContext()
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the full error message."""
        ctx_str = str(self.context)
        if ctx_str:
            return f"{self.message} {ctx_str}"
        return self.message

    def with_hint(self, hint: str) -> ObserverError:
        """Add a hint to this error."""
        self.context.hint = hint
        return self


class ConfigurationError(ObserverError):
    """Invalid observer or client configuration."""

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        option: str | None = None,
    ) -> None:
        ctx = context or ErrorContext(source="config")
        if option:
            ctx.details["option"] = option
        super().__init__(message, ctx)
        self.option = option


class RefreshError(ObserverError):
    """Error raised when the credential refresh handler fails.

    Raised when:
    - The refresh handler raises
    - The refresh handler returns a falsy credential other than None
    - The refreshing task is cancelled before the handler finishes

    The caller that triggered the refresh and every caller parked waiting
    for it each receive their own instance, chained to the same cause.
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        cause: BaseException | None = None,
    ) -> None:
        ctx = context or ErrorContext(source="refresh")
        if cause is not None:
            ctx.details["cause"] = type(cause).__name__
        super().__init__(message, ctx)
        self.__cause__ = cause


class RetryBudgetExhaustedError(ObserverError):
    """A request still failed after spending its whole retry budget.

    Attributes:
        attempts: Number of refresh-triggered retries already made
        last_error: The failure observed on the final attempt
    """

    def __init__(
        self,
        attempts: int,
        last_error: BaseException | None = None,
    ) -> None:
        ctx = ErrorContext(source="retry")
        ctx.details["attempts"] = attempts
        super().__init__(
            f"Credential refresh succeeded, but the request still failed "
            f"after {attempts} retry(s)",
            ctx,
        )
        self.attempts = attempts
        self.last_error = last_error
        self.__cause__ = last_error


class TransportError(ObserverError):
    """Error during HTTP transport.

    Raised when:
    - Network connection failure
    - Timeout
    - SSL/TLS errors
    - Proxy errors
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        url: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        ctx = context or ErrorContext(source="transport")
        if url:
            ctx.details["url"] = url
        super().__init__(message, ctx)
        self.url = url
        self.__cause__ = cause


class RemoteError(ObserverError):
    """HTTP error response returned by the backend.

    Attributes:
        status_code: HTTP status code
        body: Parsed JSON body, if any
        response: The originating httpx response
        request_id: Request identifier from response headers, if any
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        body: Any = None,
        response: httpx.Response | None = None,
        request_id: str | None = None,
    ) -> None:
        ctx = ErrorContext(source="remote")
        ctx.details["status_code"] = status_code
        if request_id:
            ctx.details["request_id"] = request_id

        super().__init__(message, ctx)

        self.status_code = status_code
        self.body = body
        self.response = response
        self.request_id = request_id

    @classmethod
    def from_response(cls, response: httpx.Response) -> RemoteError:
        """Create RemoteError from an HTTP response.

        Args:
            response: Response with status >= 400

        Returns:
            RemoteError describing the response
        """
        body = None
        try:
            body = response.json()
        except ValueError:
            body = None

        message = _extract_error_message(body) or f"HTTP {response.status_code}"

        request_id = (
            response.headers.get("x-request-id")
            or response.headers.get("request-id")
        )

        return cls(
            message,
            status_code=response.status_code,
            body=body,
            response=response,
            request_id=request_id,
        )


class RequestCancelledError(ObserverError):
    """The cancel token attached to a request fired before it completed.

    Attributes:
        reason: Why the token fired
    """

    def __init__(
        self,
        reason: CancelReason | None,
        *,
        url: str | None = None,
    ) -> None:
        ctx = ErrorContext(source="cancel")
        if reason is not None:
            ctx.details["reason"] = reason.value
        if url:
            ctx.details["url"] = url
        label = reason.value if reason is not None else "unknown"
        super().__init__(f"Request cancelled ({label})", ctx)
        self.reason = reason
        self.url = url

    @property
    def caused_by_refresh(self) -> bool:
        """Whether the cancellation came from a credential refresh starting."""
        from refresh_observer.client.cancel import CancelReason

        return self.reason is CancelReason.REFRESH


def _extract_error_message(body: Any) -> str | None:
    """Pull a human-readable message out of common error body shapes."""
    if not isinstance(body, dict):
        return None

    error = body.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str):
            return message
    elif isinstance(error, str):
        return error

    for key in ("message", "detail", "error_description"):
        value = body.get(key)
        if isinstance(value, str):
            return value
    return None
