"""Tests for the audio proxy and API forwarder using httpx.MockTransport."""

from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from tunegate.config import AppConfig, ProxyConfig, ProxyPolicy
from tunegate.errors import InvalidTarget, MissingParameter
from tunegate.proxy import ApiForwarder, AudioProxy
from tunegate.server import create_app
from tunegate.storage import PersistenceStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

Handler = Callable[[httpx.Request], httpx.Response]


def _make_client(handler: Handler, config: AppConfig | None = None) -> tuple[TestClient, list[httpx.Request]]:
    """Build a gateway whose upstream network is *handler*; return the seen requests too."""
    seen: list[httpx.Request] = []

    def _recording(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    app = create_app(
        config or AppConfig(),
        PersistenceStore(None),
        transport=httpx.MockTransport(_recording),
    )
    return TestClient(app), seen


def _audio_response(request: httpx.Request) -> httpx.Response:
    if "range" in request.headers:
        return httpx.Response(
            206,
            headers={
                "Content-Type": "audio/mpeg",
                "Content-Range": "bytes 0-99/1000",
                "Accept-Ranges": "bytes",
                "Set-Cookie": "tracking=1",
                "Access-Control-Allow-Origin": "https://www.kuwo.cn",
            },
            content=b"\x01" * 100,
        )
    return httpx.Response(200, headers={"Content-Type": "audio/mpeg"}, content=b"\x01" * 1000)


def _bare_request(headers: list[tuple[bytes, bytes]] | None = None) -> Request:
    return Request({"type": "http", "method": "GET", "headers": headers or [], "query_string": b""})


def _policy(**overrides: object) -> ProxyPolicy:
    return ProxyPolicy.from_config(ProxyConfig(**overrides))


# ---------------------------------------------------------------------------
# Target validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw",
    [
        "https://evil.example.com/a.mp3",
        "http://kuwo.cn.evil.com/a.mp3",
        "ftp://music.kuwo.cn/a.mp3",
        "javascript:alert(1)",
        "not a url",
        "http://",
        "http://[::1",
    ],
)
def test_normalize_target_rejects(raw: str):
    proxy = AudioProxy(_policy(), httpx.AsyncClient())
    with pytest.raises(InvalidTarget):
        proxy.normalize_target(raw)


def test_normalize_target_forces_http():
    proxy = AudioProxy(_policy(), httpx.AsyncClient())
    url = proxy.normalize_target("https://music.kuwo.cn/a.mp3?x=1")
    assert url.scheme == "http"
    assert url.host == "music.kuwo.cn"
    assert url.params["x"] == "1"


def test_normalize_target_keeps_https_when_policy_off():
    proxy = AudioProxy(_policy(force_http=False), httpx.AsyncClient())
    assert proxy.normalize_target("https://kuwo.cn/a.mp3").scheme == "https"


def test_audio_headers_default_user_agent_and_referer():
    proxy = AudioProxy(_policy(), httpx.AsyncClient())
    headers = proxy.build_headers(_bare_request())
    assert headers == {"User-Agent": "Mozilla/5.0", "Referer": "https://www.kuwo.cn/"}


def test_audio_headers_pass_client_user_agent_and_range():
    proxy = AudioProxy(_policy(), httpx.AsyncClient())
    headers = proxy.build_headers(_bare_request([(b"user-agent", b"Player/1.0"), (b"range", b"bytes=10-")]))
    assert headers["User-Agent"] == "Player/1.0"
    assert headers["Range"] == "bytes=10-"


# ---------------------------------------------------------------------------
# Audio proxy through the gateway
# ---------------------------------------------------------------------------


def test_disallowed_host_is_400_without_fetch():
    client, seen = _make_client(_audio_response)
    resp = client.get("/proxy", params={"target": "https://evil.example.com/a.mp3"})
    assert resp.status_code == 400
    assert resp.text == "Invalid target"
    assert seen == []


def test_range_passthrough_and_partial_content():
    client, seen = _make_client(_audio_response)
    resp = client.get(
        "/proxy",
        params={"target": "https://music.kuwo.cn/a.mp3"},
        headers={"Range": "bytes=0-99"},
    )

    assert resp.status_code == 206
    assert resp.content == b"\x01" * 100
    assert resp.headers["content-range"] == "bytes 0-99/1000"
    assert resp.headers["accept-ranges"] == "bytes"
    assert resp.headers["access-control-allow-origin"] == "*"
    assert "set-cookie" not in resp.headers

    assert len(seen) == 1
    upstream = seen[0]
    assert upstream.method == "GET"
    assert str(upstream.url) == "http://music.kuwo.cn/a.mp3"
    assert upstream.headers["range"] == "bytes=0-99"
    assert upstream.headers["referer"] == "https://www.kuwo.cn/"


def test_audio_default_cache_control_is_one_hour():
    client, _seen = _make_client(_audio_response)
    resp = client.get("/proxy", params={"target": "http://kuwo.cn/a.mp3"})
    assert resp.status_code == 200
    assert resp.headers["cache-control"] == "public, max-age=3600"


def test_audio_upstream_cache_control_wins():
    client, _seen = _make_client(
        lambda request: httpx.Response(200, headers={"Cache-Control": "max-age=5"}, content=b"x")
    )
    resp = client.get("/proxy", params={"target": "http://kuwo.cn/a.mp3"})
    assert resp.headers["cache-control"] == "max-age=5"


def test_audio_upstream_status_preserved():
    client, _seen = _make_client(lambda request: httpx.Response(404, content=b"gone"))
    resp = client.get("/proxy", params={"target": "http://kuwo.cn/a.mp3"})
    assert resp.status_code == 404
    assert resp.content == b"gone"


def test_audio_head_uses_inbound_method():
    client, seen = _make_client(lambda request: httpx.Response(200, headers={"Content-Type": "audio/mpeg"}))
    resp = client.head("/proxy", params={"target": "http://kuwo.cn/a.mp3"})
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "audio/mpeg"
    assert seen[0].method == "HEAD"


def test_audio_network_failure_is_502():
    def _fail(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client, seen = _make_client(_fail)
    resp = client.get("/proxy", params={"target": "http://kuwo.cn/a.mp3"})
    assert resp.status_code == 502
    assert resp.text == "Upstream fetch error"
    assert len(seen) == 1


def test_custom_allowed_host():
    config = AppConfig(proxy=ProxyConfig(allowed_host="media.test"))
    client, _seen = _make_client(_audio_response, config)
    assert client.get("/proxy", params={"target": "http://cdn.media.test/a.mp3"}).status_code == 200
    assert client.get("/proxy", params={"target": "http://kuwo.cn/a.mp3"}).status_code == 400


# ---------------------------------------------------------------------------
# API forwarder
# ---------------------------------------------------------------------------


def test_build_url_drops_control_params():
    forwarder = ApiForwarder(_policy(), httpx.AsyncClient())
    url = forwarder.build_url([("types", "name"), ("target", "ignored"), ("callback", "cb"), ("id", "7")])
    assert url.params["types"] == "name"
    assert url.params["id"] == "7"
    assert "target" not in url.params
    assert "callback" not in url.params
    assert url.host == "music-api.gdstudio.xyz"
    assert url.path == "/api.php"


def test_build_url_requires_types():
    forwarder = ApiForwarder(_policy(), httpx.AsyncClient())
    with pytest.raises(MissingParameter):
        forwarder.build_url([("name", "song")])


def test_build_url_last_value_wins():
    forwarder = ApiForwarder(_policy(), httpx.AsyncClient())
    url = forwarder.build_url([("types", "search"), ("page", "1"), ("page", "2")])
    assert url.params.get_list("page") == ["2"]


def test_api_missing_types_is_400_without_fetch():
    client, seen = _make_client(lambda request: httpx.Response(200, json={}))
    resp = client.get("/proxy", params={"name": "song"})
    assert resp.status_code == 400
    assert resp.text == "Missing types"
    assert seen == []


def test_api_forward_request_shape():
    client, seen = _make_client(lambda request: httpx.Response(200, json={"ok": True}))
    resp = client.get(
        "/proxy",
        params={"types": "search", "name": "song", "callback": "jsonp1", "target": ""},
        headers={"User-Agent": "Player/2.0"},
    )

    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
    upstream = seen[0]
    assert upstream.method == "GET"
    assert upstream.url.params["types"] == "search"
    assert upstream.url.params["name"] == "song"
    assert "callback" not in upstream.url.params
    assert "target" not in upstream.url.params
    assert upstream.headers["accept"] == "application/json"
    assert upstream.headers["user-agent"] == "Player/2.0"


def test_api_default_content_type_and_cache():
    client, _seen = _make_client(lambda request: httpx.Response(200, content=b'{"a":1}'))
    resp = client.get("/proxy", params={"types": "url"})
    assert resp.headers["content-type"] == "application/json; charset=utf-8"
    assert resp.headers["cache-control"] == "no-store"
    assert resp.headers["access-control-allow-origin"] == "*"


def test_api_upstream_content_type_kept():
    client, _seen = _make_client(
        lambda request: httpx.Response(500, headers={"Content-Type": "text/html"}, content=b"<h1>err</h1>")
    )
    resp = client.get("/proxy", params={"types": "url"})
    assert resp.status_code == 500
    assert resp.headers["content-type"] == "text/html"


def test_api_network_failure_is_502():
    def _fail(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client, _seen = _make_client(_fail)
    resp = client.get("/proxy", params={"types": "search"})
    assert resp.status_code == 502


# ---------------------------------------------------------------------------
# Inbound headers that cannot be sent upstream
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("params", "headers"),
    [
        ({"target": "http://kuwo.cn/a.mp3"}, {"User-Agent": b"Player/\xe9"}),
        ({"target": "http://kuwo.cn/a.mp3"}, {"Range": b"bytes=\xe9"}),
        ({"types": "search"}, {"User-Agent": b"Player/\xe9"}),
    ],
)
def test_unencodable_header_is_502_without_fetch(params: dict, headers: dict):
    client, seen = _make_client(_audio_response)
    resp = client.get("/proxy", params=params, headers=headers)
    assert resp.status_code == 502
    assert resp.text == "Upstream fetch error"
    assert seen == []


# ---------------------------------------------------------------------------
# HEAD responses
# ---------------------------------------------------------------------------


def test_audio_head_without_upstream_length_sends_none():
    client, _seen = _make_client(lambda request: httpx.Response(200, headers={"Content-Type": "audio/mpeg"}))
    resp = client.head("/proxy", params={"target": "http://kuwo.cn/a.mp3"})
    assert resp.status_code == 200
    assert "content-length" not in resp.headers


def test_audio_head_keeps_upstream_length():
    client, _seen = _make_client(
        lambda request: httpx.Response(200, headers={"Content-Type": "audio/mpeg", "Content-Length": "1000"})
    )
    resp = client.head("/proxy", params={"target": "http://kuwo.cn/a.mp3"})
    assert resp.headers["content-length"] == "1000"
    assert resp.content == b""
