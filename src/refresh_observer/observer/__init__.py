"""
Observer layer - single-flight credential refresh coordination.

This module provides:
- RequestObserver: parks concurrent requests behind one refresh
- ObserverConfig: refresh handler and retry policy
- RequestContext / FailureContext: per-request state and failure details
- RetryDecision / RetryVerdict: outcome of evaluating a failed attempt
"""

from refresh_observer.observer.config import ObserverConfig, RefreshHandler, RefreshPredicate
from refresh_observer.observer.context import (
    FailureContext,
    RequestContext,
    RetryDecision,
    RetryVerdict,
)
from refresh_observer.observer.coordinator import RequestObserver

__all__ = [
    "FailureContext",
    "ObserverConfig",
    "RefreshHandler",
    "RefreshPredicate",
    "RequestContext",
    "RequestObserver",
    "RetryDecision",
    "RetryVerdict",
]
