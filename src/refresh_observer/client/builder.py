"""
Factory and builder for creating clients that share one observer.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from refresh_observer.client.core import ObservedClient
from refresh_observer.client.interceptors import Interceptors
from refresh_observer.errors import ConfigurationError
from refresh_observer.transport.config import ClientConfig

if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx

    from refresh_observer.observer.coordinator import RequestObserver


class ClientFactory:
    """Creates clients bound to one injected observer.

    Interceptors registered on the factory are shared by every client it
    creates; interceptors passed to :meth:`create` override them per client.

    Example:
        >>> factory = ClientFactory(observer)
        >>> factory.interceptors.request.use(attach_bearer)
        >>> users = factory.create(ClientConfig(base_url="https://users.example.com"))
        >>> billing = factory.create(ClientConfig(base_url="https://billing.example.com"))
    """

    def __init__(
        self,
        observer: RequestObserver,
        interceptors: Interceptors | None = None,
    ) -> None:
        self._observer = observer
        self._interceptors = interceptors or Interceptors()

    @property
    def observer(self) -> RequestObserver:
        return self._observer

    @property
    def interceptors(self) -> Interceptors:
        """Shared interceptors, applied to every client created afterwards."""
        return self._interceptors

    def create(
        self,
        config: ClientConfig | None = None,
        interceptors: Interceptors | None = None,
        *,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> ObservedClient:
        """Create a client.

        Args:
            config: HTTP client settings
            interceptors: Per-client interceptors, merged over the shared ones
            http_transport: Custom httpx transport

        Returns:
            ObservedClient sharing this factory's observer
        """
        return ObservedClient(
            self._observer,
            config=config,
            interceptors=self._interceptors.merge(interceptors),
            http_transport=http_transport,
        )


class ObservedClientBuilder:
    """Builder for creating ObservedClient instances with custom configuration.

    Example:
        >>> client = (
        ...     ObservedClientBuilder()
        ...     .observer(observer)
        ...     .base_url("https://api.example.com")
        ...     .timeout(10.0)
        ...     .on_request(attach_bearer)
        ...     .build()
        ... )
    """

    def __init__(self) -> None:
        """Initialize the builder."""
        self._observer: RequestObserver | None = None
        self._settings: dict[str, Any] = {}
        self._interceptors = Interceptors()
        self._http_transport: httpx.AsyncBaseTransport | None = None

    def observer(self, observer: RequestObserver) -> ObservedClientBuilder:
        """Set the shared refresh observer.

        Args:
            observer: RequestObserver instance

        Returns:
            Self for chaining
        """
        self._observer = observer
        return self

    def base_url(self, url: str) -> ObservedClientBuilder:
        """Set the base URL.

        Args:
            url: Base URL for API requests

        Returns:
            Self for chaining
        """
        self._settings["base_url"] = url
        return self

    def timeout(self, seconds: float) -> ObservedClientBuilder:
        """Set request timeout.

        Args:
            seconds: Timeout in seconds

        Returns:
            Self for chaining
        """
        self._settings["timeout"] = seconds
        return self

    def headers(self, headers: dict[str, str]) -> ObservedClientBuilder:
        """Set default headers sent with every request."""
        self._settings["headers"] = dict(headers)
        return self

    def proxy(self, url: str) -> ObservedClientBuilder:
        """Set proxy URL."""
        self._settings["proxy"] = url
        return self

    def on_request(
        self,
        on_fulfilled: Callable[[Any], Any] | None,
        on_rejected: Callable[[BaseException], Any] | None = None,
    ) -> ObservedClientBuilder:
        """Register request-phase interceptors."""
        self._interceptors.request.use(on_fulfilled, on_rejected)
        return self

    def on_response(
        self,
        on_fulfilled: Callable[[Any], Any] | None,
        on_rejected: Callable[[BaseException], Any] | None = None,
    ) -> ObservedClientBuilder:
        """Register response-phase interceptors."""
        self._interceptors.response.use(on_fulfilled, on_rejected)
        return self

    def http_transport(self, transport: httpx.AsyncBaseTransport) -> ObservedClientBuilder:
        """Use a custom httpx transport."""
        self._http_transport = transport
        return self

    def build(self) -> ObservedClient:
        """Build the ObservedClient instance.

        Returns:
            Configured ObservedClient

        Raises:
            ConfigurationError: If no observer was set
        """
        if self._observer is None:
            raise ConfigurationError(
                "An observer must be set before building", option="observer"
            ).with_hint("call .observer(RequestObserver(...)) first")

        return ObservedClient(
            self._observer,
            config=ClientConfig(**self._settings),
            interceptors=self._interceptors.merge(None),
            http_transport=self._http_transport,
        )
