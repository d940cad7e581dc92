"""Request dispatch and the FastAPI applications.

Every request on the main listener goes through `dispatch`, which looks
only at an immutable `RequestInfo` and returns what should handle it:

1. the livereload control channel (when enabled),
2. the first matching proxy rule,
3. the static resolver.

The order is part of the contract: a proxy rule for "/" shadows all
static content.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import FileResponse, HTMLResponse, PlainTextResponse, RedirectResponse, Response

from liveserve.config import ProxyRule, ServerConfig
from liveserve.errors import LiveServeError, NotFoundError, ProxyForwardError
from liveserve.paths import LIVERELOAD_SCRIPT_PATH, LIVERELOAD_SOCKET_PATH
from liveserve.server.proxy import ProxyForwarder, ProxyRouter, relay_headers
from liveserve.server.reload import ReloadChannel, client_script_response, serve_client
from liveserve.server.static import (
    FileResult,
    ListingResult,
    NotFoundResult,
    RedirectResult,
    Resolution,
    StaticResolver,
    inject_script,
    render_listing,
)

logger = logging.getLogger(__name__)

RELOAD_PATHS = frozenset({LIVERELOAD_SCRIPT_PATH, LIVERELOAD_SOCKET_PATH})

HTTP_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

HTML_SUFFIXES = {".html", ".htm"}


# =============================================================================
# Dispatch
# =============================================================================


@dataclass(frozen=True)
class RequestInfo:
    """What dispatch needs to know about a request."""

    method: str
    path: str
    query: str = ""
    headers: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class ReloadRoute:
    """Hand off to the livereload control channel."""

    path: str


@dataclass(frozen=True)
class ProxyRoute:
    """Forward to the matched proxy rule's target."""

    rule: ProxyRule


@dataclass(frozen=True)
class StaticRoute:
    """Answer from the served root."""

    resolution: Resolution


Route = ReloadRoute | ProxyRoute | StaticRoute


def dispatch(
    request: RequestInfo,
    router: ProxyRouter,
    resolver: StaticResolver,
    reload_enabled: bool = False,
) -> Route:
    """Pick the component that handles a request.

    Raises:
        PathTraversalError: If a static request escapes the served root
    """
    if reload_enabled and request.path in RELOAD_PATHS:
        return ReloadRoute(request.path)

    rule = router.match(request.path)
    if rule is not None:
        return ProxyRoute(rule)

    return StaticRoute(resolver.resolve(request.path))


# =============================================================================
# Application State
# =============================================================================


class AppState:
    """Per-instance collaborators shared by the request handlers."""

    def __init__(
        self,
        config: ServerConfig,
        root: Path,
        forwarder: ProxyForwarder,
        channel: ReloadChannel | None = None,
    ) -> None:
        self.config = config
        self.root = root.resolve()
        self.router = ProxyRouter(config.proxies)
        self.resolver = StaticResolver(
            self.root,
            default_file=config.default_file,
            directory_listing=config.directory_listing,
        )
        self.forwarder = forwarder
        self.channel = channel
        self.start_time = time.time()

    @property
    def reload_enabled(self) -> bool:
        return self.channel is not None


# =============================================================================
# Responses
# =============================================================================


def reload_script_url(hostname: str, port: int) -> str:
    """Scheme-relative URL of the client script on the reload listener."""
    if ":" in hostname:
        hostname = f"[{hostname}]"
    return f"//{hostname}:{port}{LIVERELOAD_SCRIPT_PATH}"


def _read_page(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


async def _proxy_response(route: ProxyRoute, info: RequestInfo, request: Request, state: AppState) -> Response:
    upstream = await state.forwarder.forward(
        route.rule,
        info.method,
        info.path,
        query=info.query,
        headers=info.headers,
        body=await request.body(),
    )
    response = Response(content=upstream.content, status_code=upstream.status_code)
    for name, value in relay_headers(upstream):
        response.headers.append(name, value)
    return response


async def _file_response(result: FileResult, request: Request, state: AppState) -> Response:
    if state.reload_enabled and result.path.suffix.lower() in HTML_SUFFIXES:
        script_url = reload_script_url(request.url.hostname or state.config.host, state.config.livereload.port)
        loop = asyncio.get_running_loop()
        page = await loop.run_in_executor(None, _read_page, result.path)
        return HTMLResponse(inject_script(page, script_url))
    return FileResponse(result.path)


async def _static_response(route: StaticRoute, info: RequestInfo, request: Request, state: AppState) -> Response:
    resolution = route.resolution

    if info.method not in ("GET", "HEAD") or isinstance(resolution, NotFoundResult):
        raise NotFoundError(info.path, method=info.method)

    if isinstance(resolution, FileResult):
        return await _file_response(resolution, request, state)

    if isinstance(resolution, RedirectResult):
        location = resolution.location
        if info.query:
            location = f"{location}?{info.query}"
        return RedirectResponse(location, status_code=301)

    if isinstance(resolution, ListingResult):
        return HTMLResponse(render_listing(resolution.request_path, resolution.entries))

    raise NotFoundError(info.path, method=info.method)


async def respond(route: Route, info: RequestInfo, request: Request, state: AppState) -> Response:
    """Turn a dispatch decision into an HTTP response."""
    if isinstance(route, ReloadRoute):
        if route.path == LIVERELOAD_SCRIPT_PATH:
            return client_script_response()
        return PlainTextResponse("Upgrade Required", status_code=426, headers={"Upgrade": "websocket"})

    if isinstance(route, ProxyRoute):
        return await _proxy_response(route, info, request, state)

    return await _static_response(route, info, request, state)


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(LiveServeError)
    async def liveserve_error_handler(request: Request, exc: LiveServeError) -> Response:
        if isinstance(exc, ProxyForwardError):
            logger.warning(exc.message)
            return PlainTextResponse(f"Bad Gateway: {exc.message}", status_code=502)
        if exc.status_code >= 500:
            logger.error(exc.message)
        else:
            logger.debug(exc.message)
        return PlainTextResponse(exc.message, status_code=exc.status_code)


# =============================================================================
# Application Factories
# =============================================================================


def create_app(
    config: ServerConfig,
    root: Path,
    forwarder: ProxyForwarder | None = None,
    channel: ReloadChannel | None = None,
) -> FastAPI:
    """Create the main application serving one root.

    Args:
        config: Resolved server configuration
        root: Served root directory
        forwarder: Proxy forwarder (a private one is created if omitted)
        channel: Reload channel; None when livereload is disabled

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="liveserve",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    state = AppState(config, root, forwarder or ProxyForwarder(), channel)
    app.state.liveserve = state
    _install_error_handlers(app)

    if channel is not None:

        @app.websocket(LIVERELOAD_SOCKET_PATH)
        async def livereload_socket(websocket: WebSocket) -> None:
            """Control channel, also reachable on the main port."""
            await serve_client(channel, websocket)

    @app.api_route("/{path:path}", methods=HTTP_METHODS, include_in_schema=False)
    async def handle(request: Request) -> Response:
        info = RequestInfo(
            method=request.method,
            path=request.scope["path"],
            query=request.url.query,
            headers=tuple(request.headers.items()),
        )
        route = dispatch(info, state.router, state.resolver, reload_enabled=state.reload_enabled)
        return await respond(route, info, request, state)

    return app


def create_reload_app(channel: ReloadChannel) -> FastAPI:
    """Create the application for the dedicated livereload listener."""
    app = FastAPI(
        title="liveserve livereload",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.channel = channel

    @app.get(LIVERELOAD_SCRIPT_PATH)
    async def livereload_script() -> Response:
        return client_script_response()

    @app.get("/status")
    async def status() -> dict[str, Any]:
        return {
            "status": "closed" if channel.closed else "running",
            "clients": channel.client_count,
            "degraded": channel.degraded,
        }

    @app.websocket(LIVERELOAD_SOCKET_PATH)
    async def livereload_socket(websocket: WebSocket) -> None:
        await serve_client(channel, websocket)

    return app


__all__ = [
    "RequestInfo",
    "ReloadRoute",
    "ProxyRoute",
    "StaticRoute",
    "Route",
    "dispatch",
    "respond",
    "AppState",
    "create_app",
    "create_reload_app",
    "reload_script_url",
]
