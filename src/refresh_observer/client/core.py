"""
ObservedClient - HTTP client that refreshes credentials and retries.

Every outgoing request asks the shared :class:`RequestObserver` for a cancel
token before it is sent. Every failed attempt is handed back to the observer,
which decides whether to retry after a credential refresh, give up, or pass
the failure on to the user's interceptors.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from refresh_observer.client.interceptors import Interceptors
from refresh_observer.errors import ObserverError
from refresh_observer.observer.context import (
    FailureContext,
    RequestContext,
    RetryDecision,
)
from refresh_observer.telemetry.logger import (
    LogContext,
    bound_log_context,
    get_log_context,
    get_logger,
    set_log_context,
)
from refresh_observer.transport.http import HttpTransport

if TYPE_CHECKING:
    import httpx

    from refresh_observer.client.cancel import CancelToken
    from refresh_observer.observer.coordinator import RequestObserver
    from refresh_observer.transport.config import ClientConfig

logger = get_logger("refresh_observer.client")

CANCEL_TOKEN_EXTENSION = "refresh_observer.cancel_token"
"""Key under ``httpx.Request.extensions`` holding the token of the current attempt."""


class ObservedClient:
    """Async HTTP client wired to a :class:`RequestObserver`.

    Example:
        >>> observer = RequestObserver(ObserverConfig(refresh_handler=refresh))
        >>> async with ObservedClient(observer, config=ClientConfig(base_url=url)) as client:
        ...     response = await client.get("/me")
    """

    def __init__(
        self,
        observer: RequestObserver,
        *,
        config: ClientConfig | None = None,
        interceptors: Interceptors | None = None,
        transport: HttpTransport | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            observer: Shared refresh coordinator
            config: HTTP client settings (ignored when ``transport`` is given)
            interceptors: User request/response callbacks
            transport: Prebuilt transport
            http_transport: Custom httpx transport for the default transport
        """
        self._observer = observer
        self._transport = transport or HttpTransport(config, transport=http_transport)
        self._interceptors = interceptors or Interceptors()

    @property
    def observer(self) -> RequestObserver:
        return self._observer

    @property
    def interceptors(self) -> Interceptors:
        return self._interceptors

    @property
    def transport(self) -> HttpTransport:
        return self._transport

    async def request(
        self,
        method: str,
        url: str,
        *,
        cancel_token: CancelToken | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Build and send a request.

        Args:
            method: HTTP method
            url: Request URL (relative to base URL)
            cancel_token: Caller's own cancel token
            **kwargs: Passed to ``httpx.AsyncClient.build_request``
                (``json``, ``params``, ``headers``, ``content``...)

        Returns:
            HTTP response
        """
        request = self._transport.build_request(method, url, **kwargs)
        return await self.send(request, cancel_token=cancel_token)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)

    async def send(
        self,
        request: httpx.Request,
        *,
        cancel_token: CancelToken | None = None,
    ) -> httpx.Response:
        """Send a request through the observer pipeline.

        Args:
            request: Request to send
            cancel_token: Caller's own cancel token

        Returns:
            HTTP response, possibly from a retry after a credential refresh

        Raises:
            RetryBudgetExhaustedError: If the request still failed after its retries
            RefreshError: If the refresh it triggered or joined failed
            ObserverError: Any other failure not recovered by an interceptor
        """
        ctx = RequestContext(request=request, external_token=cancel_token)
        log_context = LogContext(
            request_id=ctx.request_id,
            method=request.method,
            url=str(request.url),
            retry_count=ctx.retry_count,
        )
        with bound_log_context(log_context):
            return await self._send_with_retries(ctx)

    async def _send_with_retries(self, ctx: RequestContext) -> httpx.Response:
        while True:
            try:
                prepared = await self._on_request(ctx)
            except Exception as e:
                ctx.release_signal()
                return await self._interceptors.request.reject(e)

            try:
                response = await self._transport.send(prepared, ctx.signal)
            except ObserverError as error:
                verdict = self._observer.decide_retry(FailureContext.from_error(ctx, error))
                if verdict.decision is RetryDecision.RETRY_AFTER_REFRESH:
                    continue
                if verdict.decision is RetryDecision.GIVE_UP:
                    raise verdict.error from error  # type: ignore[misc]
                return await self._interceptors.response.reject(error)
            finally:
                ctx.release_signal()

            return await self._interceptors.response.fulfil(response)

    async def _on_request(self, ctx: RequestContext) -> httpx.Request:
        set_log_context(get_log_context().evolve(retry_count=ctx.retry_count))
        ctx.signal = await self._observer.acquire_signal(ctx.retry_count, ctx.external_token)
        ctx.request.extensions[CANCEL_TOKEN_EXTENSION] = ctx.signal
        ctx.request = await self._interceptors.request.fulfil(ctx.request)
        # The interceptor may have returned a different request object.
        ctx.request.extensions[CANCEL_TOKEN_EXTENSION] = ctx.signal
        ctx.attempts += 1
        logger.debug("Sending request", attempt=ctx.attempts)
        return ctx.request

    async def close(self) -> None:
        """Close the underlying transport."""
        await self._transport.close()

    async def __aenter__(self) -> ObservedClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
