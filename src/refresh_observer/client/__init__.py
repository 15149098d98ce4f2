"""
Client layer - User-facing API.

This module provides:
- ObservedClient: httpx-based client wired to a RequestObserver
- ClientFactory / ObservedClientBuilder: construction with explicit observer injection
- Interceptors: user request/response callbacks
- Cancellation: tokens, handles and linked tokens
"""

from refresh_observer.client.cancel import (
    CancelHandle,
    CancelReason,
    CancelState,
    CancelToken,
    LinkedCancelToken,
    create_cancel_pair,
    link_tokens,
)
from refresh_observer.client.core import CANCEL_TOKEN_EXTENSION, ObservedClient
from refresh_observer.client.interceptors import InterceptorPair, Interceptors
from refresh_observer.client.builder import ClientFactory, ObservedClientBuilder

__all__ = [
    "CANCEL_TOKEN_EXTENSION",
    "CancelHandle",
    "CancelReason",
    "CancelState",
    "CancelToken",
    "ClientFactory",
    "InterceptorPair",
    "Interceptors",
    "LinkedCancelToken",
    "ObservedClient",
    "ObservedClientBuilder",
    "create_cancel_pair",
    "link_tokens",
]
