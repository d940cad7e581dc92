"""Tests for proxy rule matching and forwarding."""

from __future__ import annotations

import httpx
import pytest

from liveserve.config import ProxyRule
from liveserve.errors import ProxyForwardError
from liveserve.server.proxy import (
    ProxyForwarder,
    ProxyRouter,
    forward_headers,
    relay_headers,
    upstream_url,
)


def rule(source: str, target: str = "http://localhost:8001", **headers: str) -> ProxyRule:
    return ProxyRule(source=source, target=target, headers=headers)


# =============================================================================
# TestProxyRouter
# =============================================================================


class TestProxyRouter:
    """Tests for first-match-in-order prefix matching."""

    def test_no_rules(self) -> None:
        assert ProxyRouter([]).match("/anything") is None

    def test_prefix_match(self) -> None:
        api = rule("/api")
        router = ProxyRouter([api])

        assert router.match("/api") is api
        assert router.match("/api/users") is api
        assert router.match("/other") is None

    def test_match_is_not_exact(self) -> None:
        router = ProxyRouter([rule("/proxied")])
        assert router.match("/proxied/deep/file.js") is not None

    def test_earlier_overlapping_rule_wins(self) -> None:
        broad = rule("/api", "http://localhost:3000")
        narrow = rule("/api/v2", "http://localhost:3001")
        router = ProxyRouter([broad, narrow])

        for _ in range(100):
            assert router.match("/api/v2/items") is broad

    def test_identical_prefixes_resolve_to_first(self) -> None:
        first = rule("/same", "http://localhost:3000")
        second = rule("/same", "http://localhost:3001")
        router = ProxyRouter([first, second])

        assert router.match("/same/x") is first

    def test_root_rule_matches_everything(self) -> None:
        router = ProxyRouter([rule("/")])
        assert router.match("/index.html") is not None


# =============================================================================
# TestUpstreamUrl
# =============================================================================


class TestUpstreamUrl:
    """Tests for upstream URL construction."""

    def test_exact_prefix_maps_to_target_root(self) -> None:
        assert str(upstream_url(rule("/proxied"), "/proxied")) == "http://localhost:8001/"

    def test_remainder_is_appended(self) -> None:
        url = upstream_url(rule("/api", "http://localhost:3000/v1"), "/api/users")
        assert str(url) == "http://localhost:3000/v1/users"

    def test_query_is_preserved(self) -> None:
        url = upstream_url(rule("/api"), "/api/search", "q=hello&page=2")
        assert str(url) == "http://localhost:8001/search?q=hello&page=2"

    def test_root_rule_keeps_path(self) -> None:
        assert str(upstream_url(rule("/"), "/app.js")) == "http://localhost:8001/app.js"


# =============================================================================
# TestHeaders
# =============================================================================


class TestHeaders:
    """Tests for forwarded request and relayed response headers."""

    def test_hop_by_hop_and_host_are_dropped(self) -> None:
        headers = forward_headers(
            [
                ("Host", "localhost:8000"),
                ("Connection", "keep-alive"),
                ("Accept", "text/html"),
            ],
            rule("/api"),
        )

        assert "host" not in headers
        assert "connection" not in headers
        assert headers["accept"] == "text/html"

    def test_rule_headers_override_incoming(self) -> None:
        headers = forward_headers(
            [("X-Forwarded-Host", "evil"), ("Accept", "*/*")],
            ProxyRule(
                source="/api",
                target="http://localhost:3000",
                headers={"x-forwarded-host": "localhost:8000"},
            ),
        )

        assert headers.get_list("x-forwarded-host") == ["localhost:8000"]

    def test_repeated_incoming_headers_are_kept(self) -> None:
        headers = forward_headers(
            [("Accept", "text/html"), ("Cookie", "a=1"), ("Cookie", "b=2"), ("Content-Length", "3")],
            rule("/api"),
        )

        assert isinstance(headers, httpx.Headers)
        assert headers.get_list("cookie") == ["a=1", "b=2"]
        assert "content-length" not in headers

    def test_no_forwarded_headers_by_default(self) -> None:
        headers = forward_headers([("Accept", "*/*")], rule("/api"))
        assert not [name for name in headers if name.lower().startswith("x-forwarded")]

    def test_relay_drops_length_and_encoding(self) -> None:
        response = httpx.Response(
            200,
            headers=[
                ("Content-Type", "text/plain"),
                ("Content-Length", "5"),
                ("Content-Encoding", "gzip"),
                ("Set-Cookie", "a=1"),
                ("Set-Cookie", "b=2"),
            ],
        )

        relayed = relay_headers(response)

        assert ("content-type", "text/plain") in [(k.lower(), v) for k, v in relayed]
        assert [v for k, v in relayed if k.lower() == "set-cookie"] == ["a=1", "b=2"]
        assert not [k for k, _ in relayed if k.lower() in ("content-length", "content-encoding")]


# =============================================================================
# TestProxyForwarder
# =============================================================================


class TestProxyForwarder:
    """Tests for ProxyForwarder with a mocked upstream."""

    @pytest.mark.asyncio
    async def test_forward_sends_rewritten_request(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="I am Ron Burgandy?")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        forwarder = ProxyForwarder(client)

        response = await forwarder.forward(
            ProxyRule(
                source="/proxied",
                target="http://localhost:8001",
                headers={"X-forwarded-host": "localhost:8000"},
            ),
            "GET",
            "/proxied",
            headers=[("Host", "localhost:8000")],
        )
        await client.aclose()

        assert response.status_code == 200
        assert response.text == "I am Ron Burgandy?"
        assert str(seen[0].url) == "http://localhost:8001/"
        assert seen[0].headers["host"] == "localhost:8001"
        assert seen[0].headers["x-forwarded-host"] == "localhost:8000"

    @pytest.mark.asyncio
    async def test_forward_passes_body(self) -> None:
        bodies: list[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request.content)
            return httpx.Response(201)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        response = await ProxyForwarder(client).forward(rule("/api"), "POST", "/api/items", body=b'{"a": 1}')
        await client.aclose()

        assert response.status_code == 201
        assert bodies == [b'{"a": 1}']

    @pytest.mark.asyncio
    async def test_unreachable_target_raises(self) -> None:
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            raise httpx.ConnectError("Connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        with pytest.raises(ProxyForwardError) as exc_info:
            await ProxyForwarder(client).forward(rule("/api"), "GET", "/api")
        await client.aclose()

        assert exc_info.value.status_code == 502
        assert len(attempts) == 1  # not retried

    @pytest.mark.asyncio
    async def test_timeout_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        with pytest.raises(ProxyForwardError, match="timed out"):
            await ProxyForwarder(client).forward(rule("/api"), "GET", "/api")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_aclose_keeps_borrowed_client_open(self) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(204)))
        forwarder = ProxyForwarder(client)

        await forwarder.aclose()

        assert not client.is_closed
        await client.aclose()
