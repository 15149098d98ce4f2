"""
HTTP client configuration.
"""

from __future__ import annotations

import os
from contextlib import suppress

from pydantic import BaseModel, ConfigDict, Field

_DEFAULT_TIMEOUT = 30.0
_DEFAULT_CONNECT_TIMEOUT = 10.0


def _timeout_from_env() -> float:
    env_timeout = os.getenv("REFRESH_OBSERVER_HTTP_TIMEOUT_SECS")
    if env_timeout:
        with suppress(ValueError):
            return float(env_timeout)
    return _DEFAULT_TIMEOUT


def _trust_env_enabled() -> bool:
    """Use env proxy settings only when explicitly enabled."""
    return os.getenv("REFRESH_OBSERVER_TRUST_ENV", "0") == "1"


class ClientConfig(BaseModel):
    """Settings for the underlying httpx client."""

    model_config = ConfigDict(extra="forbid")

    base_url: str = Field(default="", description="Base URL prepended to relative request URLs")
    timeout: float = Field(
        default_factory=_timeout_from_env, gt=0, description="Request timeout in seconds"
    )
    connect_timeout: float = Field(
        default=_DEFAULT_CONNECT_TIMEOUT, gt=0, description="Connect timeout in seconds"
    )
    headers: dict[str, str] = Field(
        default_factory=dict, description="Headers sent with every request"
    )
    proxy: str | None = Field(default=None, description="Proxy URL")
    trust_env: bool = Field(
        default_factory=_trust_env_enabled,
        description="Honour proxy and certificate environment variables",
    )
    follow_redirects: bool = Field(default=False, description="Follow HTTP redirects")
