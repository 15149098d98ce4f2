"""凭证刷新协调器：为 httpx 客户端提供单飞刷新与请求取消合并。

refresh-observer: single-flight credential refresh for async httpx clients.

Many concurrent requests that find their credential stale share one refresh;
requests in flight when it starts are cancelled and retried with the new
credential.
"""
from __future__ import annotations

from refresh_observer.client import (
    CancelHandle,
    CancelReason,
    CancelToken,
    ClientFactory,
    InterceptorPair,
    Interceptors,
    ObservedClient,
    ObservedClientBuilder,
    create_cancel_pair,
    link_tokens,
)
from refresh_observer.errors import (
    ConfigurationError,
    ObserverError,
    RefreshError,
    RemoteError,
    RequestCancelledError,
    RetryBudgetExhaustedError,
    TransportError,
)
from refresh_observer.observer import (
    ObserverConfig,
    RequestObserver,
    RetryDecision,
    RetryVerdict,
)
from refresh_observer.transport import ClientConfig, HttpTransport

__version__ = "0.1.0"

__all__ = [
    # Cancellation
    "CancelHandle",
    "CancelReason",
    "CancelToken",
    # Client
    "ClientConfig",
    "ClientFactory",
    # Errors
    "ConfigurationError",
    "HttpTransport",
    "InterceptorPair",
    "Interceptors",
    "ObservedClient",
    "ObservedClientBuilder",
    # Observer
    "ObserverConfig",
    "ObserverError",
    "RefreshError",
    "RemoteError",
    "RequestCancelledError",
    "RequestObserver",
    "RetryBudgetExhaustedError",
    "RetryDecision",
    "RetryVerdict",
    "TransportError",
    "__version__",
    "create_cancel_pair",
    "link_tokens",
]
