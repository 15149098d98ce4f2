"""
Request cancellation control.

Provides cancellation tokens and handles for aborting in-flight requests,
plus linked tokens that fire when any of their sources fires.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from refresh_observer.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger("refresh_observer.cancel")


class CancelReason(str, Enum):
    """Reasons for cancellation."""

    USER_REQUEST = "user_request"
    TIMEOUT = "timeout"
    REFRESH = "refresh"
    SHUTDOWN = "shutdown"


@dataclass
class CancelState:
    """State of a cancellation token.

    Attributes:
        cancelled: Whether cancellation was requested
        reason: Reason for cancellation
        timestamp: Time of cancellation
    """

    cancelled: bool = False
    reason: CancelReason | None = None
    timestamp: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class CancelToken:
    """Cancellation token for aborting async requests.

    A token fires at most once and may be observed by any number of
    listeners, either by awaiting :meth:`wait` or by registering a callback.

    Example:
        >>> token = CancelToken(timeout=5.0)
        >>> response = await client.get("/users", cancel_token=token)
        >>>
        >>> # Cancel from another task
        >>> token.cancel(CancelReason.USER_REQUEST)
    """

    def __init__(self, timeout: float | None = None) -> None:
        """Initialize cancellation token.

        Args:
            timeout: Optional timeout in seconds
        """
        self._state = CancelState()
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[CancelReason], Any]] = []
        self._timeout = timeout
        self._timeout_task: asyncio.Task[None] | None = None

        if timeout:
            self._start_timeout()

    def _start_timeout(self) -> None:
        """Start the timeout task."""
        async def timeout_handler() -> None:
            await asyncio.sleep(self._timeout)  # type: ignore
            if not self._state.cancelled:
                self.cancel(CancelReason.TIMEOUT)

        try:
            loop = asyncio.get_running_loop()
            self._timeout_task = loop.create_task(timeout_handler())
        except RuntimeError:
            # No running loop, the token can only be cancelled explicitly
            pass

    def cancel(
        self,
        reason: CancelReason = CancelReason.USER_REQUEST,
        **metadata: Any,
    ) -> bool:
        """Request cancellation.

        Args:
            reason: Reason for cancellation
            **metadata: Additional metadata

        Returns:
            True if cancellation was newly requested, False if already cancelled
        """
        if self._state.cancelled:
            return False

        self._state.cancelled = True
        self._state.reason = reason
        self._state.timestamp = time.time()
        self._state.metadata.update(metadata)

        self._event.set()

        if self._timeout_task and not self._timeout_task.done():
            self._timeout_task.cancel()

        for callback in list(self._callbacks):
            self._invoke(callback, reason)

        return True

    @staticmethod
    def _invoke(callback: Callable[[CancelReason], Any], reason: CancelReason) -> None:
        try:
            result = callback(reason)
            if asyncio.iscoroutine(result):
                _ = asyncio.create_task(result)  # noqa: RUF006
        except Exception:
            logger.exception("Cancel callback failed", reason=reason.value)

    @property
    def is_cancelled(self) -> bool:
        """Check if cancellation was requested."""
        return self._state.cancelled

    @property
    def reason(self) -> CancelReason | None:
        """Get cancellation reason."""
        return self._state.reason

    @property
    def state(self) -> CancelState:
        """Get full cancellation state."""
        return self._state

    @property
    def listener_count(self) -> int:
        """Number of registered cancel callbacks."""
        return len(self._callbacks)

    async def wait(self) -> CancelReason:
        """Wait until cancellation is requested.

        Returns:
            Cancellation reason
        """
        await self._event.wait()
        return self._state.reason or CancelReason.USER_REQUEST

    async def wait_with_timeout(self, timeout: float) -> bool:
        """Wait for cancellation with a timeout.

        Args:
            timeout: Timeout in seconds

        Returns:
            True if cancelled, False if timeout occurred
        """
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def on_cancel(self, callback: Callable[[CancelReason], Any]) -> CancelToken:
        """Register a callback to be called on cancellation.

        Args:
            callback: Callback function

        Returns:
            Self for chaining
        """
        self._callbacks.append(callback)
        # If already cancelled, call immediately
        if self._state.cancelled and self._state.reason:
            self._invoke(callback, self._state.reason)
        return self

    def remove_callback(self, callback: Callable[[CancelReason], Any]) -> bool:
        """Unregister a cancel callback.

        Returns:
            True if the callback was registered
        """
        try:
            self._callbacks.remove(callback)
        except ValueError:
            return False
        return True


class LinkedCancelToken(CancelToken):
    """Token that fires when any of its source tokens fires.

    The first source to fire decides the reason. Call :meth:`close` once the
    token is no longer needed so the sources drop their reference to it.

    Example:
        >>> linked = LinkedCancelToken(epoch_token, caller_token)
        >>> try:
        ...     await transport.send(request, linked)
        ... finally:
        ...     linked.close()
    """

    def __init__(self, *sources: CancelToken) -> None:
        super().__init__()
        self._sources = sources
        for source in sources:
            source.on_cancel(self._on_source_cancel)

    def _on_source_cancel(self, reason: CancelReason) -> None:
        self.cancel(reason)

    @property
    def sources(self) -> tuple[CancelToken, ...]:
        """Tokens this token listens to."""
        return self._sources

    def close(self) -> None:
        """Detach from all source tokens."""
        for source in self._sources:
            source.remove_callback(self._on_source_cancel)


def link_tokens(*tokens: CancelToken | None) -> CancelToken:
    """Combine tokens into one that fires when any of them fires.

    ``None`` entries are ignored. A single remaining token is returned as is.

    Raises:
        ValueError: If no token is given
    """
    present = [t for t in tokens if t is not None]
    if not present:
        raise ValueError("At least one token is required")
    if len(present) == 1:
        return present[0]
    return LinkedCancelToken(*present)


class CancelHandle:
    """Handle for cancelling requests.

    Provides a public interface for callers to abort a request,
    while the token is passed along with the request.
    """

    def __init__(self, token: CancelToken) -> None:
        """Initialize cancel handle.

        Args:
            token: Associated cancel token
        """
        self._token = token

    def cancel(
        self,
        reason: CancelReason = CancelReason.USER_REQUEST,
        **metadata: Any,
    ) -> bool:
        """Request cancellation.

        Args:
            reason: Reason for cancellation
            **metadata: Additional metadata

        Returns:
            True if cancellation was newly requested
        """
        return self._token.cancel(reason, **metadata)

    @property
    def is_cancelled(self) -> bool:
        """Check if cancellation was requested."""
        return self._token.is_cancelled

    @property
    def reason(self) -> CancelReason | None:
        """Get cancellation reason."""
        return self._token.reason


def create_cancel_pair(
    timeout: float | None = None,
) -> tuple[CancelHandle, CancelToken]:
    """Create a cancel handle and token pair.

    Args:
        timeout: Optional timeout in seconds

    Returns:
        Tuple of (CancelHandle, CancelToken)
    """
    token = CancelToken(timeout=timeout)
    handle = CancelHandle(token)
    return handle, token
