"""Integration tests for the Path-Mapped Relay (``/api/*`` → upstream base).

Uses the real create_app() with an httpx.MockTransport upstream:
  - target URL = base + path after the prefix + raw query string
  - origin-identifying and platform headers stripped; the rest forwarded
  - GET/HEAD carry no body; structured bodies re-sent as compact JSON
  - upstream status copied; only allowlisted response headers copied
  - JSON responses re-emitted as JSON, anything else emitted raw
"""

from __future__ import annotations

import gzip
import json

import pytest
from starlette.testclient import TestClient

from helpers import UPSTREAM_BASE, MockUpstream, build_test_app, stub_config
from relayproxy.constants import PATH_MAPPED_USER_AGENT


def _client(mock: MockUpstream, monkeypatch: pytest.MonkeyPatch, **relay) -> TestClient:
    return TestClient(build_test_app(mock, monkeypatch, stub_config(**relay)))


# ─── Target construction ──────────────────────────────────────────────────────


class TestTargetUrl:
    @pytest.mark.parametrize(
        "path",
        ["/api/bootstrap-static/", "/api/entry/123/history/", "/api/event/1/live/"],
    )
    def test_path_appended_to_base(self, path: str, monkeypatch: pytest.MonkeyPatch) -> None:
        mock = MockUpstream()
        with _client(mock, monkeypatch) as client:
            response = client.get(path)
        assert response.status_code == 200
        assert str(mock.last_request.url) == UPSTREAM_BASE + path[len("/api"):]

    def test_query_string_forwarded_byte_for_byte(self, monkeypatch: pytest.MonkeyPatch) -> None:
        mock = MockUpstream()
        with _client(mock, monkeypatch) as client:
            client.get("/api/fixtures/?event=7&ids=1%2C2&flag")
        assert str(mock.last_request.url) == f"{UPSTREAM_BASE}/fixtures/?event=7&ids=1%2C2&flag"

    def test_no_query_adds_no_question_mark(self, monkeypatch: pytest.MonkeyPatch) -> None:
        mock = MockUpstream()
        with _client(mock, monkeypatch) as client:
            client.get("/api/fixtures/")
        assert "?" not in str(mock.last_request.url)

    def test_bare_prefix_maps_to_base(self, monkeypatch: pytest.MonkeyPatch) -> None:
        mock = MockUpstream()
        with _client(mock, monkeypatch) as client:
            client.get("/api?event=1")
        assert str(mock.last_request.url) == f"{UPSTREAM_BASE}?event=1"

    def test_encoded_slash_kept_encoded(self, monkeypatch: pytest.MonkeyPatch) -> None:
        mock = MockUpstream()
        with _client(mock, monkeypatch) as client:
            client.get("/api/search/a%2Fb")
        assert mock.last_request.url.raw_path == b"/api/search/a%2Fb"

    def test_custom_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        mock = MockUpstream()
        with _client(mock, monkeypatch, prefix="/fpl") as client:
            client.get("/fpl/teams/")
        assert str(mock.last_request.url) == f"{UPSTREAM_BASE}/teams/"

    def test_paths_outside_prefix_not_relayed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        mock = MockUpstream()
        with _client(mock, monkeypatch) as client:
            response = client.get("/other/teams/")
        assert response.status_code == 404
        assert mock.request_count == 0

    @pytest.mark.parametrize("method", ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"])
    def test_method_preserved(self, method: str, monkeypatch: pytest.MonkeyPatch) -> None:
        mock = MockUpstream()
        with _client(mock, monkeypatch) as client:
            response = client.request(method, "/api/my-team/1/")
        assert response.status_code == 200
        assert mock.last_request.method == method


# ─── Request headers ──────────────────────────────────────────────────────────


class TestRequestHeaders:
    def test_origin_identifying_headers_stripped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        mock = MockUpstream()
        with _client(mock, monkeypatch) as client:
            client.get(
                "/api/me/",
                headers={
                    "Origin": "https://app.example",
                    "Referer": "https://app.example/page",
                    "X-Forwarded-For": "203.0.113.9",
                    "X-Forwarded-Proto": "https",
                    "X-Real-IP": "203.0.113.9",
                    "Forwarded": "for=203.0.113.9",
                    "X-Vercel-Id": "iad1::xyz",
                },
            )
        sent = mock.last_request.headers
        for name in (
            "origin",
            "referer",
            "x-forwarded-for",
            "x-forwarded-proto",
            "x-real-ip",
            "forwarded",
            "x-vercel-id",
        ):
            assert name not in sent
        # Host is the upstream's own, not the proxy's.
        assert sent["host"] == "origin.example"

    def test_other_headers_forwarded(self, monkeypatch: pytest.MonkeyPatch) -> None:
        mock = MockUpstream()
        with _client(mock, monkeypatch) as client:
            client.get(
                "/api/me/",
                headers={
                    "Authorization": "Bearer t0k3n",
                    "Cookie": "pl_profile=abc",
                    "X-Api-Version": "2",
                    "Accept-Language": "de-DE",
                },
            )
        sent = mock.last_request.headers
        assert sent["authorization"] == "Bearer t0k3n"
        assert sent["cookie"] == "pl_profile=abc"
        assert sent["x-api-version"] == "2"
        assert sent["accept-language"] == "de-DE"

    def test_user_agent_replaced(self, monkeypatch: pytest.MonkeyPatch) -> None:
        mock = MockUpstream()
        with _client(mock, monkeypatch) as client:
            client.get("/api/me/", headers={"User-Agent": "my-app/1.0"})
        assert mock.last_request.headers.get_list("user-agent") == [PATH_MAPPED_USER_AGENT]

    def test_caller_accept_preserved(self, monkeypatch: pytest.MonkeyPatch) -> None:
        mock = MockUpstream()
        with _client(mock, monkeypatch) as client:
            client.get("/api/me/", headers={"Accept": "text/csv"})
        assert mock.last_request.headers["accept"] == "text/csv"


# ─── Request bodies ───────────────────────────────────────────────────────────


class TestRequestBody:
    def test_get_sends_no_body(self, monkeypatch: pytest.MonkeyPatch) -> None:
        mock = MockUpstream()
        with _client(mock, monkeypatch) as client:
            client.request(
                "GET", "/api/x/", content=b'{"a":1}', headers={"content-type": "application/json"}
            )
        assert mock.last_request.content == b""

    def test_json_body_reserialized(self, monkeypatch: pytest.MonkeyPatch) -> None:
        mock = MockUpstream()
        payload = {"picks": [{"element": 1, "is_captain": True}], "chip": None}
        with _client(mock, monkeypatch) as client:
            client.post("/api/my-team/1/", json=payload)
        sent = mock.last_request
        assert json.loads(sent.content) == payload
        assert sent.headers["content-type"] == "application/json"

    def test_form_body_sent_as_json(self, monkeypatch: pytest.MonkeyPatch) -> None:
        mock = MockUpstream()
        with _client(mock, monkeypatch) as client:
            client.post("/api/login/", data={"login": "a@b.example", "password": "pw"})
        sent = mock.last_request
        assert json.loads(sent.content) == {"login": "a@b.example", "password": "pw"}
        assert sent.headers["content-type"] == "application/json"

    def test_raw_body_forwarded_unchanged(self, monkeypatch: pytest.MonkeyPatch) -> None:
        mock = MockUpstream()
        raw = b"\x00\x01binary\xff"
        with _client(mock, monkeypatch) as client:
            client.put(
                "/api/upload/", content=raw, headers={"content-type": "application/octet-stream"}
            )
        sent = mock.last_request
        assert sent.content == raw
        assert sent.headers["content-type"] == "application/octet-stream"


# ─── Response relay ───────────────────────────────────────────────────────────


class TestResponse:
    def test_json_response_relayed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        body = {"events": [{"id": 1, "name": "Gameweek 1"}], "total_players": 11000000}
        mock = MockUpstream(body=json.dumps(body).encode())
        with _client(mock, monkeypatch) as client:
            response = client.get("/api/bootstrap-static/")
        assert response.status_code == 200
        assert response.json() == body
        assert response.headers["content-type"] == "application/json"

    def test_html_response_relayed_raw(self, monkeypatch: pytest.MonkeyPatch) -> None:
        mock = MockUpstream(body=b"<h1>Maintenance</h1>", content_type="text/html; charset=utf-8")
        with _client(mock, monkeypatch) as client:
            response = client.get("/api/bootstrap-static/")
        assert response.text == "<h1>Maintenance</h1>"
        assert response.headers["content-type"] == "text/html; charset=utf-8"

    @pytest.mark.parametrize("status", [201, 304, 404, 429, 503])
    def test_status_copied(self, status: int, monkeypatch: pytest.MonkeyPatch) -> None:
        body = b"" if status == 304 else b'{"detail":"x"}'
        mock = MockUpstream(status_code=status, body=body)
        with _client(mock, monkeypatch) as client:
            response = client.get("/api/x/")
        assert response.status_code == status

    def test_allowlisted_headers_copied_others_dropped(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        mock = MockUpstream(
            headers={
                "cache-control": "max-age=30",
                "etag": '"v9"',
                "last-modified": "Wed, 31 Dec 2025 00:00:00 GMT",
                "set-cookie": "csrftoken=abc",
                "server": "nginx",
                "x-frame-options": "DENY",
            }
        )
        with _client(mock, monkeypatch) as client:
            response = client.get("/api/x/")
        assert response.headers["cache-control"] == "max-age=30"
        assert response.headers["etag"] == '"v9"'
        assert response.headers["last-modified"] == "Wed, 31 Dec 2025 00:00:00 GMT"
        for name in ("set-cookie", "server", "x-frame-options"):
            assert name not in response.headers

    def test_compressed_upstream_body_relayed_decoded(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        mock = MockUpstream(
            body=gzip.compress(b'{"a": 1}'), headers={"content-encoding": "gzip"}
        )
        with _client(mock, monkeypatch) as client:
            response = client.get("/api/x/")
        assert "content-encoding" not in response.headers
        assert response.json() == {"a": 1}
        assert response.headers["content-length"] == str(len(response.content))

    def test_head_has_no_body(self, monkeypatch: pytest.MonkeyPatch) -> None:
        mock = MockUpstream(headers={"etag": '"h"'})
        with _client(mock, monkeypatch) as client:
            response = client.head("/api/x/")
        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["etag"] == '"h"'
        assert mock.last_request.method == "HEAD"

    def test_each_request_gets_one_upstream_call(self, monkeypatch: pytest.MonkeyPatch) -> None:
        mock = MockUpstream()
        with _client(mock, monkeypatch) as client:
            for _ in range(5):
                client.get("/api/x/")
        assert mock.request_count == 5
