"""
Observer configuration.

Holds the refresh handler and the policy knobs that decide when a failed
request is retried after a credential refresh.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from refresh_observer.errors import ConfigurationError

RefreshHandler = Callable[[], Awaitable[Any]]
"""Async callable performing the refresh. Its result is the new credential, or None."""

RefreshPredicate = Callable[[BaseException], bool]
"""Custom classifier deciding whether a failure warrants a refresh."""

_DEFAULT_STATUS_CODES = frozenset({401})

# Accepted spellings for from_mapping(); camelCase mirrors JS-style client options.
_OPTION_ALIASES: dict[str, str] = {
    "combineAbortSignals": "combine_abort_signals",
    "statusCodes": "status_codes",
    "shouldRefresh": "should_refresh",
    "retryCount": "retry_count",
}


@dataclass(frozen=True)
class ObserverConfig:
    """Configuration for :class:`RequestObserver`.

    Attributes:
        refresh_handler: Async callable that refreshes the credential
        combine_abort_signals: Merge a request's own cancel token with the observer's
        status_codes: Response status codes that trigger refresh-and-retry
        should_refresh: Optional predicate overriding ``status_codes``
        retry_count: Maximum refresh-triggered retries per request
    """

    refresh_handler: RefreshHandler
    combine_abort_signals: bool = False
    status_codes: frozenset[int] = field(default_factory=lambda: _DEFAULT_STATUS_CODES)
    should_refresh: RefreshPredicate | None = None
    retry_count: int = 1

    def __post_init__(self) -> None:
        if not callable(self.refresh_handler):
            raise ConfigurationError(
                "refresh_handler must be an async callable", option="refresh_handler"
            )
        if self.retry_count < 0:
            raise ConfigurationError(
                f"retry_count must be >= 0, got {self.retry_count}", option="retry_count"
            )
        if not isinstance(self.status_codes, frozenset):
            object.__setattr__(self, "status_codes", frozenset(self.status_codes))

    @classmethod
    def from_mapping(
        cls,
        refresh_handler: RefreshHandler,
        options: Mapping[str, Any] | None = None,
    ) -> ObserverConfig:
        """Create config from a plain options mapping.

        Both snake_case and camelCase keys are accepted; unknown keys are
        rejected.

        Args:
            refresh_handler: Async refresh callable
            options: Option mapping, e.g. ``{"retryCount": 2, "statusCodes": [401, 419]}``

        Returns:
            ObserverConfig instance
        """
        if not options:
            return cls(refresh_handler=refresh_handler)

        kwargs: dict[str, Any] = {}
        for key, value in options.items():
            name = _OPTION_ALIASES.get(key, key)
            if name not in ("combine_abort_signals", "status_codes", "should_refresh", "retry_count"):
                raise ConfigurationError(f"Unknown observer option: {key}", option=key)
            kwargs[name] = value

        if "status_codes" in kwargs:
            kwargs["status_codes"] = _to_status_codes(kwargs["status_codes"])

        return cls(refresh_handler=refresh_handler, **kwargs)


def _to_status_codes(value: Iterable[int] | int) -> frozenset[int]:
    if isinstance(value, int):
        return frozenset({value})
    return frozenset(int(code) for code in value)
