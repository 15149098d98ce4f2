"""
Single-flight credential refresh coordination.

The observer guarantees that at most one credential refresh runs at a time.
Requests that need a refresh while one is already running are parked and
resumed in the order they parked once it finishes. Each refresh round fires
the current cancellation epoch so requests still using the stale credential
are aborted and retried, then installs a fresh epoch for later requests.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import TYPE_CHECKING

from refresh_observer.client.cancel import CancelReason, CancelToken, LinkedCancelToken
from refresh_observer.errors import (
    RefreshError,
    RequestCancelledError,
    RetryBudgetExhaustedError,
)
from refresh_observer.observer.context import (
    FailureContext,
    RetryDecision,
    RetryVerdict,
)
from refresh_observer.telemetry.logger import get_logger

if TYPE_CHECKING:
    from refresh_observer.observer.config import ObserverConfig

logger = get_logger("refresh_observer.observer")


class RequestObserver:
    """Coordinates credential refreshes across concurrent requests.

    One observer is created per backend and shared by every client that
    talks to it.

    Example:
        >>> async def refresh() -> str:
        ...     return await token_store.refresh()
        >>>
        >>> observer = RequestObserver(ObserverConfig(refresh_handler=refresh))
        >>> token = await observer.acquire_signal(retry_count=0)
    """

    def __init__(self, config: ObserverConfig) -> None:
        """Initialize observer.

        Args:
            config: Observer configuration
        """
        self._config = config
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._epoch = CancelToken()
        self._suspended = False
        self._refresh_count = 0

    @property
    def config(self) -> ObserverConfig:
        """Observer configuration."""
        return self._config

    @property
    def is_suspended(self) -> bool:
        """Whether a refresh is currently in flight."""
        return self._suspended

    @property
    def pending_waiters(self) -> int:
        """Number of callers parked on the current refresh."""
        return len(self._waiters)

    @property
    def refresh_count(self) -> int:
        """Number of refresh rounds started."""
        return self._refresh_count

    @property
    def current_epoch(self) -> CancelToken:
        """Token fired when the next refresh starts."""
        return self._epoch

    async def acquire_signal(
        self,
        retry_count: int = 0,
        external_token: CancelToken | None = None,
    ) -> CancelToken:
        """Get the cancel token to attach to an outgoing request.

        A retried request, or any request issued while a refresh is in
        flight, first triggers or joins the refresh.

        Args:
            retry_count: Refresh-triggered retries the request has made
            external_token: The caller's own cancel token

        Returns:
            The epoch token, or a linked token that also observes
            ``external_token`` when signal combination is enabled

        Raises:
            RefreshError: If the refresh this call triggered or joined failed
            RequestCancelledError: If ``external_token`` fired while parked and
                signal combination is enabled
        """
        if retry_count > 0 or self._suspended:
            watched = external_token if self._config.combine_abort_signals else None
            await self.trigger_or_join_refresh(cancel_token=watched)
        return self._combine(external_token)

    def _combine(self, external_token: CancelToken | None) -> CancelToken:
        if external_token is None or not self._config.combine_abort_signals:
            return self._epoch
        return LinkedCancelToken(self._epoch, external_token)

    async def trigger_or_join_refresh(self, cancel_token: CancelToken | None = None) -> None:
        """Run a credential refresh, or wait for the one in flight.

        Args:
            cancel_token: Token that abandons the wait when it fires. Only a
                parked caller can abandon; a running refresh always finishes.

        Raises:
            RefreshError: If the refresh failed
            RequestCancelledError: If ``cancel_token`` fired while parked
        """
        if self._suspended:
            await self._park(cancel_token)
            return

        # Must happen before the first await so concurrent callers park.
        self._suspended = True
        self._refresh_count += 1
        round_no = self._refresh_count
        self._epoch.cancel(CancelReason.REFRESH, round=round_no)
        logger.debug("Credential refresh started", round=round_no)

        try:
            credential = await self._config.refresh_handler()
        except asyncio.CancelledError as e:
            self._fail_all(RefreshError("Credential refresh was cancelled", cause=e))
            raise
        except Exception as e:
            error = RefreshError(f"Credential refresh failed: {e}", cause=e)
            logger.error(
                "Credential refresh failed",
                exc_info=True,
                round=round_no,
                waiters=len(self._waiters),
            )
            self._fail_all(error)
            raise error from e

        if credential is not None and not credential:
            error = RefreshError("Credential refresh returned an empty credential")
            logger.error("Credential refresh returned an empty credential", round=round_no)
            self._fail_all(error)
            raise error

        self.notify_all()

    async def _park(self, cancel_token: CancelToken | None = None) -> None:
        if cancel_token is not None and cancel_token.is_cancelled:
            raise RequestCancelledError(cancel_token.reason)

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        logger.debug("Waiting for credential refresh", position=len(self._waiters))

        if cancel_token is None:
            await waiter
            return

        abandoned = asyncio.ensure_future(cancel_token.wait())
        try:
            await asyncio.wait({waiter, abandoned}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            waiter.cancel()
            raise
        finally:
            abandoned.cancel()

        if waiter.done():
            # The refresh outcome wins a tie.
            waiter.result()
            return

        # Unsettled futures are always still queued.
        self._waiters.remove(waiter)
        waiter.cancel()
        logger.debug("Stopped waiting for credential refresh", reason=cancel_token.reason)
        raise RequestCancelledError(cancel_token.reason)

    def notify_all(self) -> None:
        """Finish the current refresh round and wake parked callers in order."""
        woken = self._release()
        for waiter in woken:
            if not waiter.done():
                waiter.set_result(None)
        logger.info(
            "Credential refresh completed",
            round=self._refresh_count,
            waiters=len(woken),
        )

    def _fail_all(self, error: RefreshError) -> None:
        # One instance per waiter, all chained to the same cause.
        for waiter in self._release():
            if not waiter.done():
                waiter.set_exception(RefreshError(error.message, cause=error.__cause__))

    def _release(self) -> list[asyncio.Future[None]]:
        self._epoch = CancelToken()
        woken = list(self._waiters)
        self._waiters.clear()
        self._suspended = False
        return woken

    def should_refresh(self, error: BaseException, status_code: int | None = None) -> bool:
        """Whether a failure matches the refresh trigger.

        Args:
            error: The failure
            status_code: HTTP status of the failure, if it was a response

        Returns:
            True if the custom predicate (or, without one, ``status_codes``) matches
        """
        if self._config.should_refresh is not None:
            return bool(self._config.should_refresh(error))
        return status_code is not None and status_code in self._config.status_codes

    def decide_retry(self, failure: FailureContext) -> RetryVerdict:
        """Decide what to do with a failed attempt.

        Increments the request's ``retry_count`` when the verdict is
        ``RETRY_AFTER_REFRESH``. The refresh itself happens when the caller
        next asks for a signal.

        Args:
            failure: The failed attempt

        Returns:
            RetryVerdict
        """
        ctx = failure.request
        if ctx.retry_count >= self._config.retry_count:
            logger.warning(
                "Retry budget exhausted",
                request_id=ctx.request_id,
                retry_count=ctx.retry_count,
            )
            return RetryVerdict(
                RetryDecision.GIVE_UP,
                RetryBudgetExhaustedError(ctx.retry_count, failure.error),
            )

        if failure.cancelled_by_refresh or self.should_refresh(
            failure.error, failure.status_code
        ):
            ctx.retry_count += 1
            logger.debug(
                "Retrying after credential refresh",
                request_id=ctx.request_id,
                retry_count=ctx.retry_count,
            )
            return RetryVerdict(RetryDecision.RETRY_AFTER_REFRESH)

        return RetryVerdict(RetryDecision.PROPAGATE, failure.error)
