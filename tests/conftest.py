"""Root pytest fixtures for refresh-observer tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from refresh_observer.client import InterceptorPair, Interceptors, ObservedClient
from refresh_observer.observer import ObserverConfig, RequestObserver
from refresh_observer.transport import ClientConfig

BASE_URL = "https://api.test"


class TokenStore:
    """In-memory credential holder with a counting refresh operation."""

    def __init__(self, token: str = "stale", delay: float = 0.05) -> None:
        self.token = token
        self.delay = delay
        self.refresh_calls = 0
        self.fail_with: Exception | None = None

    async def refresh(self) -> str:
        self.refresh_calls += 1
        await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        self.token = f"fresh-{self.refresh_calls}"
        return self.token

    def attach(self, request: httpx.Request) -> httpx.Request:
        request.headers["Authorization"] = f"Bearer {self.token}"
        return request


class FakeBackend:
    """Mock transport handler that only accepts refreshed tokens.

    Requests to ``/slow`` carrying a stale token take ``slow_latency``
    seconds before answering 200, so they are still in flight when a
    refresh starts.
    """

    def __init__(self, slow_latency: float = 1.0) -> None:
        self.slow_latency = slow_latency
        self.seen: list[tuple[str, str | None]] = []
        self.requests: list[httpx.Request] = []
        self.status_override: dict[str, int] = {}

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        auth = request.headers.get("Authorization")
        path = request.url.path
        self.seen.append((path, auth))
        self.requests.append(request)
        await asyncio.sleep(0)

        if path in self.status_override:
            return httpx.Response(self.status_override[path], json={"error": "forced"})
        if path == "/slow" and auth == "Bearer stale":
            await asyncio.sleep(self.slow_latency)
            return httpx.Response(200, json={"path": path, "auth": auth})
        if not auth or not auth.startswith("Bearer fresh"):
            return httpx.Response(401, json={"error": {"message": "invalid_token"}})
        return httpx.Response(200, json={"path": path, "auth": auth})

    def hits(self, path: str) -> list[str | None]:
        return [auth for p, auth in self.seen if p == path]


@pytest.fixture
def token_store() -> TokenStore:
    """Credential store whose token starts stale."""
    return TokenStore()


@pytest.fixture
def backend() -> FakeBackend:
    """Fake token-protected backend."""
    return FakeBackend()


@pytest.fixture
def make_client(
    token_store: TokenStore, backend: FakeBackend
) -> Callable[..., ObservedClient]:
    """Factory for clients wired to ``token_store`` and ``backend``."""

    def _make(
        interceptors: Interceptors | None = None,
        **options: Any,
    ) -> ObservedClient:
        observer = RequestObserver(
            ObserverConfig(refresh_handler=token_store.refresh, **options)
        )
        base = Interceptors(request=InterceptorPair(on_fulfilled=token_store.attach))
        return ObservedClient(
            observer,
            config=ClientConfig(base_url=BASE_URL),
            interceptors=base.merge(interceptors),
            http_transport=httpx.MockTransport(backend),
        )

    return _make
