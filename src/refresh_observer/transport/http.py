"""HTTP 传输层：基于 httpx 的异步 HTTP 客户端，支持取消令牌。

HTTP transport using httpx for async requests.

Provides:
- Cancellation by token (the send is raced against the token)
- Configurable timeouts
- Proxy support
- Conversion of httpx failures into library errors
"""

from __future__ import annotations

import asyncio
import importlib.util
from typing import TYPE_CHECKING, Any, TypeGuard

import httpx

from refresh_observer.errors import RemoteError, RequestCancelledError, TransportError
from refresh_observer.transport.config import ClientConfig

if TYPE_CHECKING:
    from refresh_observer.client.cancel import CancelToken


_UA_VERSION: str | None = None


def _http2_enabled() -> bool:
    """Enable HTTP/2 only when optional dependency is present."""
    return importlib.util.find_spec("h2") is not None


def _get_ua_version() -> str:
    """Get package version for User-Agent (cached)."""
    global _UA_VERSION
    if _UA_VERSION is None:
        try:
            from importlib.metadata import PackageNotFoundError, version

            _UA_VERSION = version("refresh-observer")
        except PackageNotFoundError:
            _UA_VERSION = "0.1.0"
    return _UA_VERSION


def is_cancellation(error: BaseException) -> TypeGuard[RequestCancelledError]:
    """Whether an error means the request was cancelled by its token."""
    return isinstance(error, RequestCancelledError)


class HttpTransport:
    """HTTP transport for API communication.

    Uses httpx for async HTTP requests. Every send can be raced against a
    :class:`CancelToken`; if the token fires first the in-flight request is
    abandoned and :class:`RequestCancelledError` is raised.

    Example:
        >>> transport = HttpTransport(ClientConfig(base_url="https://api.example.com"))
        >>> request = transport.build_request("GET", "/me")
        >>> response = await transport.send(request, token)
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize HTTP transport.

        Args:
            config: Client settings
            transport: Custom httpx transport (e.g. ``httpx.MockTransport`` in tests)
        """
        self._config = config or ClientConfig()
        self._transport = transport
        # Client instance (lazy initialization)
        self._client: httpx.AsyncClient | None = None

    @property
    def config(self) -> ClientConfig:
        """Client settings."""
        return self._config

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            timeout = httpx.Timeout(
                self._config.timeout,
                connect=self._config.connect_timeout,
            )
            headers = {
                "Accept": "application/json",
                "User-Agent": f"refresh-observer/{_get_ua_version()}",
                **self._config.headers,
            }

            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=timeout,
                headers=headers,
                proxy=self._config.proxy,
                transport=self._transport,
                http2=self._transport is None and _http2_enabled(),
                trust_env=self._config.trust_env,
                follow_redirects=self._config.follow_redirects,
            )

        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def build_request(self, method: str, url: str, **kwargs: Any) -> httpx.Request:
        """Build a request using the client's base URL and default headers.

        Args:
            method: HTTP method
            url: Request URL (relative to base URL)
            **kwargs: Passed to ``httpx.AsyncClient.build_request``

        Returns:
            The built request
        """
        return self._get_client().build_request(method, url, **kwargs)

    async def send(
        self,
        request: httpx.Request,
        token: CancelToken | None = None,
    ) -> httpx.Response:
        """Send a request, aborting it if ``token`` fires first.

        Args:
            request: Request to send
            token: Cancel token observed for the duration of the send

        Returns:
            HTTP response

        Raises:
            RequestCancelledError: If the token fired before the response arrived
            TransportError: On network/connection errors
            RemoteError: On error responses (4xx, 5xx)
        """
        if token is None:
            return await self._send(request)

        if token.is_cancelled:
            raise RequestCancelledError(token.reason, url=str(request.url))

        send_task = asyncio.ensure_future(self._send(request))
        cancel_task = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {send_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
            )
        except BaseException:
            send_task.cancel()
            cancel_task.cancel()
            raise

        if send_task in done:
            cancel_task.cancel()
            return send_task.result()

        send_task.cancel()
        await asyncio.gather(send_task, return_exceptions=True)
        raise RequestCancelledError(token.reason, url=str(request.url))

    async def _send(self, request: httpx.Request) -> httpx.Response:
        client = self._get_client()
        url = str(request.url)

        try:
            response = await client.send(request)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out: {e}", url=url, cause=e) from e
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error: {e}", url=url, cause=e) from e

        if response.status_code >= 400:
            raise RemoteError.from_response(response)

        return response

    async def __aenter__(self) -> HttpTransport:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
