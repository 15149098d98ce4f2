"""
Transport layer - httpx-based HTTP client with token-driven cancellation.
"""

from refresh_observer.transport.config import ClientConfig
from refresh_observer.transport.http import HttpTransport, is_cancellation

__all__ = [
    "ClientConfig",
    "HttpTransport",
    "is_cancellation",
]
