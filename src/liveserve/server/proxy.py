"""Reverse-proxy rules and forwarding.

`ProxyRouter` picks the rule for a request path; `ProxyForwarder` sends
the request upstream with httpx and hands back the upstream response.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

import httpx

from liveserve.config import ProxyRule
from liveserve.errors import ProxyForwardError

logger = logging.getLogger(__name__)

# Headers that describe a single connection and must not be forwarded
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

# Dropped from upstream responses: httpx has already decoded the body
RESPONSE_SKIP_HEADERS = HOP_BY_HOP_HEADERS | {"content-length", "content-encoding"}


class ProxyRouter:
    """Ordered proxy rules; the first matching prefix wins."""

    def __init__(self, rules: Sequence[ProxyRule]) -> None:
        self.rules = tuple(rules)

    def match(self, request_path: str) -> ProxyRule | None:
        """Find the first rule whose source is a prefix of the path.

        Args:
            request_path: URL path of the incoming request

        Returns:
            The earliest declared matching rule, or None
        """
        for rule in self.rules:
            if request_path.startswith(rule.source):
                return rule
        return None

    def __len__(self) -> int:
        return len(self.rules)


def upstream_url(rule: ProxyRule, request_path: str, query: str = "") -> httpx.URL:
    """Build the upstream URL for a matched request.

    The matched prefix is stripped and the remainder appended to the
    target's own path, so `/api/users` under rule `/api -> http://h/v1`
    goes to `http://h/v1/users`.
    """
    remainder = request_path[len(rule.source) :]
    if not remainder.startswith("/"):
        remainder = f"/{remainder}"

    target = httpx.URL(rule.target)
    url = target.copy_with(path=target.path.rstrip("/") + remainder)
    if query:
        url = url.copy_with(query=query.encode("ascii"))
    return url


def forward_headers(incoming: Iterable[tuple[str, str]], rule: ProxyRule) -> httpx.Headers:
    """Headers for the upstream request.

    Incoming headers minus hop-by-hop ones and Host (httpx sets it for the
    target); the rule's headers replace same-named values.
    """
    kept = [
        (name, value)
        for name, value in incoming
        if name.lower() not in HOP_BY_HOP_HEADERS and name.lower() not in ("host", "content-length")
    ]
    headers = httpx.Headers(kept)
    for name, value in rule.headers.items():
        headers[name] = value
    return headers


def relay_headers(response: httpx.Response) -> list[tuple[str, str]]:
    """End-to-end upstream response headers, duplicates preserved."""
    return [
        (name, value)
        for name, value in response.headers.multi_items()
        if name.lower() not in RESPONSE_SKIP_HEADERS
    ]


class ProxyForwarder:
    """Forward requests to proxy targets over a shared httpx client.

    Attributes:
        client: Async client owned by this forwarder unless one was passed in
    """

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(follow_redirects=False, verify=False)

    async def forward(
        self,
        rule: ProxyRule,
        method: str,
        request_path: str,
        query: str = "",
        headers: Iterable[tuple[str, str]] = (),
        body: bytes = b"",
    ) -> httpx.Response:
        """Send one request upstream.

        Not retried on failure.

        Raises:
            ProxyForwardError: If the target is unreachable, times out or
                breaks the HTTP exchange
        """
        url = upstream_url(rule, request_path, query)
        try:
            return await self.client.request(
                method,
                url,
                headers=forward_headers(headers, rule),
                content=body or None,
                timeout=rule.timeout,
            )
        except httpx.TimeoutException as e:
            raise ProxyForwardError(f"Proxy target {url} timed out", target=str(url)) from e
        except httpx.HTTPError as e:
            raise ProxyForwardError(
                f"Proxy target {url} failed: {e.__class__.__name__}: {e}",
                target=str(url),
            ) from e

    async def aclose(self) -> None:
        """Close the underlying client, abandoning in-flight requests."""
        if self._owns_client:
            await self.client.aclose()


__all__ = [
    "ProxyRouter",
    "ProxyForwarder",
    "upstream_url",
    "forward_headers",
    "relay_headers",
    "HOP_BY_HOP_HEADERS",
]
