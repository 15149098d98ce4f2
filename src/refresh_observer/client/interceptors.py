"""
User interceptor callbacks for the request and response phases.

Each phase has an ``on_fulfilled`` callback (sees the request before it is
sent, or the successful response) and an ``on_rejected`` callback (sees the
error). Callbacks may be plain functions or coroutines.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx


async def _call(callback: Callable[[Any], Any], value: Any) -> Any:
    result = callback(value)
    if inspect.isawaitable(result):
        result = await result
    return result


@dataclass
class InterceptorPair:
    """Callbacks for one phase.

    Attributes:
        on_fulfilled: Called with the request (request phase) or the
            successful response (response phase). Returning a value replaces
            it; returning None keeps the original.
        on_rejected: Called with the error. Returning an ``httpx.Response``
            recovers from the error; returning None re-raises it. The
            callback may also raise its own exception.
    """

    on_fulfilled: Callable[[Any], Any] | None = None
    on_rejected: Callable[[BaseException], Any] | None = None

    def use(
        self,
        on_fulfilled: Callable[[Any], Any] | None,
        on_rejected: Callable[[BaseException], Any] | None = None,
    ) -> InterceptorPair:
        """Register callbacks. ``on_rejected`` is only replaced when given.

        Returns:
            Self for chaining
        """
        self.on_fulfilled = on_fulfilled
        if on_rejected is not None:
            self.on_rejected = on_rejected
        return self

    def merged(self, override: InterceptorPair | None) -> InterceptorPair:
        """Return a copy where callbacks set on ``override`` win."""
        if override is None:
            return replace(self)
        return InterceptorPair(
            on_fulfilled=override.on_fulfilled or self.on_fulfilled,
            on_rejected=override.on_rejected or self.on_rejected,
        )

    async def fulfil(self, value: Any) -> Any:
        if self.on_fulfilled is None:
            return value
        result = await _call(self.on_fulfilled, value)
        return value if result is None else result

    async def reject(self, error: BaseException) -> httpx.Response:
        """Hand an error to ``on_rejected``.

        Returns:
            The recovery response produced by the callback

        Raises:
            The original error when there is no callback or it does not recover
        """
        if self.on_rejected is not None:
            result = await _call(self.on_rejected, error)
            if result is not None:
                return result
        raise error


@dataclass
class Interceptors:
    """Request and response interceptors for a client."""

    request: InterceptorPair = field(default_factory=InterceptorPair)
    response: InterceptorPair = field(default_factory=InterceptorPair)

    def merge(self, override: Interceptors | None) -> Interceptors:
        """Combine with per-client interceptors; the override's callbacks win."""
        if override is None:
            return Interceptors(request=replace(self.request), response=replace(self.response))
        return Interceptors(
            request=self.request.merged(override.request),
            response=self.response.merged(override.response),
        )
