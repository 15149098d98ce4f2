"""
Per-request retry state and retry decisions.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from refresh_observer.errors import RemoteError
from refresh_observer.transport.http import is_cancellation

if TYPE_CHECKING:
    from refresh_observer.client.cancel import CancelReason, CancelToken


@dataclass
class RequestContext:
    """State of one logical request across its attempts.

    Attributes:
        request: Transport request object being sent
        external_token: Cancel token supplied by the caller, if any
        retry_count: Refresh-triggered retries made so far
        signal: Token attached to the current attempt
        attempts: Number of times the request was handed to the transport
        request_id: Identifier used in logs
    """

    request: Any
    external_token: CancelToken | None = None
    retry_count: int = 0
    signal: CancelToken | None = None
    attempts: int = 0
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def release_signal(self) -> None:
        """Detach the current attempt's token from its sources, if it is linked."""
        close = getattr(self.signal, "close", None)
        if close is not None:
            close()
        self.signal = None


@dataclass
class FailureContext:
    """Description of a failed attempt.

    Attributes:
        request: The request's context
        error: The failure raised by the transport
        status_code: HTTP status, when the failure was an error response
        cancel_reason: Reason the attached token fired, when the failure was a cancellation
    """

    request: RequestContext
    error: BaseException
    status_code: int | None = None
    cancel_reason: CancelReason | None = None

    @classmethod
    def from_error(cls, request: RequestContext, error: BaseException) -> FailureContext:
        """Classify a transport failure.

        Args:
            request: The failed request's context
            error: Exception raised while sending

        Returns:
            FailureContext with status and cancellation details filled in
        """
        status_code = None
        cancel_reason = None
        if isinstance(error, RemoteError):
            status_code = error.status_code
        elif is_cancellation(error):
            cancel_reason = error.reason
        return cls(
            request=request,
            error=error,
            status_code=status_code,
            cancel_reason=cancel_reason,
        )

    @property
    def cancelled_by_refresh(self) -> bool:
        """Whether the attempt was aborted because a credential refresh started."""
        from refresh_observer.client.cancel import CancelReason

        return self.cancel_reason is CancelReason.REFRESH


class RetryDecision(str, Enum):
    """Outcome of evaluating a failed attempt."""

    GIVE_UP = "give_up"
    RETRY_AFTER_REFRESH = "retry_after_refresh"
    PROPAGATE = "propagate"


@dataclass(frozen=True)
class RetryVerdict:
    """Decision plus the error to surface for terminal outcomes."""

    decision: RetryDecision
    error: BaseException | None = None

    @property
    def should_retry(self) -> bool:
        return self.decision is RetryDecision.RETRY_AFTER_REFRESH
