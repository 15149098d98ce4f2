"""错误体系：提供凭证刷新与请求重试相关的结构化错误类型。

Error hierarchy for refresh-observer.
"""

from refresh_observer.errors.base import (
    ConfigurationError,
    ErrorContext,
    ObserverError,
    RefreshError,
    RemoteError,
    RequestCancelledError,
    RetryBudgetExhaustedError,
    TransportError,
)

__all__ = [
    "ConfigurationError",
    "ErrorContext",
    "ObserverError",
    "RefreshError",
    "RemoteError",
    "RequestCancelledError",
    "RetryBudgetExhaustedError",
    "TransportError",
]
