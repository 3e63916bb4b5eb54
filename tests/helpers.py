"""Shared test helpers: an in-process mock upstream and an app builder."""

from __future__ import annotations

from typing import Any, Optional

import httpx
import pytest

from relayproxy.config import Config
from relayproxy.main import create_app

UPSTREAM_BASE = "https://origin.example/api"


def stub_config(**relay_overrides: Any) -> Config:
    """Return a default Config pointed at the mock upstream (no file I/O)."""
    config = Config.defaults()
    config.upstream.base_url = UPSTREAM_BASE
    for key, value in relay_overrides.items():
        setattr(config.relay, key, value)
    return config


class MockUpstream:
    """In-process mock upstream server using httpx.MockTransport.

    Records every request it receives and returns a configurable response,
    or raises ``raise_on_send`` to simulate a transport failure.
    """

    def __init__(
        self,
        *,
        status_code: int = 200,
        body: bytes = b'{"ok":true}',
        content_type: Optional[str] = "application/json",
        headers: Optional[dict[str, str]] = None,
        raise_on_send: Optional[Exception] = None,
    ) -> None:
        self.received_requests: list[httpx.Request] = []
        self._status_code = status_code
        self._body = body
        self._headers = dict(headers or {})
        if content_type is not None:
            self._headers.setdefault("content-type", content_type)
        self._raise_on_send = raise_on_send

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.received_requests.append(request)
        if self._raise_on_send is not None:
            raise self._raise_on_send
        return httpx.Response(
            self._status_code,
            content=self._body,
            headers=self._headers,
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def request_count(self) -> int:
        return len(self.received_requests)

    @property
    def last_request(self) -> httpx.Request:
        return self.received_requests[-1]


def build_test_app(
    mock_upstream: MockUpstream,
    monkeypatch: pytest.MonkeyPatch,
    config: Optional[Config] = None,
) -> Any:
    """Build a relayproxy app whose lifespan creates a mock-backed client."""
    monkeypatch.setattr(
        "relayproxy.main.create_http_client",
        lambda **_: mock_upstream.client(),
    )
    return create_app(config or stub_config())
