"""Server lifecycle management.

`start` binds the listeners up front (so a busy port fails fast with
`BindError`), then runs one uvicorn server per listener on a private
event loop in a background thread. `stop` tears everything down again
and may be called any number of times.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import threading
import time
import webbrowser
from pathlib import Path
from typing import Any

import uvicorn

from liveserve.config import ServerConfig
from liveserve.errors import BindError, ConfigError, LiveServeError
from liveserve.server.app import create_app, create_reload_app
from liveserve.server.proxy import ProxyForwarder
from liveserve.server.reload import ReloadChannel
from liveserve.server.watcher import FileWatcher, ReloadBridge

logger = logging.getLogger(__name__)

# Maximum time to wait for the listeners to start serving
STARTUP_TIMEOUT = 10.0

# Maximum time to wait for the serving thread on stop
SHUTDOWN_TIMEOUT = 5.0

# Seconds uvicorn waits for open connections before cancelling them
GRACEFUL_TIMEOUT = 1

# Interval at which the serving loop checks for a stop request
POLL_INTERVAL = 0.05

LISTEN_BACKLOG = 128


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind and listen on host:port.

    Raises:
        BindError: If the address is in use or cannot be bound
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
        sock.listen(LISTEN_BACKLOG)
    except OSError as e:
        sock.close()
        raise BindError(host, port, e.strerror or str(e)) from e
    return sock


def browser_url(config: ServerConfig) -> str:
    """URL to open in a browser for this configuration."""
    host = "localhost" if config.host in ("0.0.0.0", "::", "") else config.host
    return f"{config.scheme}://{host}:{config.port}{config.open_path}"


def open_browser(url: str) -> threading.Thread:
    """Open a browser tab in the background. Failures are only logged."""

    def _open() -> None:
        try:
            if not webbrowser.open(url):
                logger.warning(f"No browser available to open {url}")
        except Exception as e:
            logger.warning(f"Could not open browser: {e}")

    thread = threading.Thread(target=_open, name="liveserve-open-browser", daemon=True)
    thread.start()
    return thread


class ServerInstance:
    """One running server: its listeners, reload channel and watcher.

    Attributes:
        config: Configuration the instance was started with
        root: Served root directory
        listeners: Bound listening sockets, main listener first
        channel: Reload channel, None when livereload is disabled
        bridge: Watcher-to-channel bridge, None when livereload is disabled
    """

    def __init__(self, config: ServerConfig, root: Path) -> None:
        self.config = config
        self.root = root
        self.listeners: list[socket.socket] = []
        self.channel: ReloadChannel | None = None
        self.bridge: ReloadBridge | None = None
        self.forwarder: ProxyForwarder | None = None
        self._servers: list[uvicorn.Server] = []
        self._thread: threading.Thread | None = None
        self._started = threading.Event()
        self._stop_requested = threading.Event()
        self._startup_error: BaseException | None = None
        self._stopped = False
        self._lock = threading.Lock()

    @property
    def url(self) -> str:
        return self.config.url

    @property
    def watcher(self) -> FileWatcher | None:
        """Active file watcher, if livereload is enabled."""
        return self.bridge.watcher if self.bridge else None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stopped

    def __enter__(self) -> ServerInstance:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    def __repr__(self) -> str:
        state = "running" if self.is_running else "stopped"
        return f"<ServerInstance {self.url} root={self.root} {state}>"

    # -------------------------------------------------------------------------
    # Startup
    # -------------------------------------------------------------------------

    def _launch(self) -> None:
        """Run the servers in a background thread and wait until they serve."""
        self._thread = threading.Thread(
            target=self._run,
            name=f"liveserve-{self.config.port}",
            daemon=True,
        )
        self._thread.start()

        if not self._started.wait(STARTUP_TIMEOUT):
            raise LiveServeError(f"Server failed to start within {STARTUP_TIMEOUT}s")
        if self._startup_error is not None:
            raise LiveServeError(f"Server failed to start: {self._startup_error}") from self._startup_error

    def _run(self) -> None:
        try:
            asyncio.run(self._serve())
        except Exception as e:
            logger.error(f"Server loop crashed: {e}")
            self._startup_error = self._startup_error or e
        finally:
            self._started.set()

    def _uvicorn_config(self, app: Any) -> uvicorn.Config:
        tls = self.config.tls
        return uvicorn.Config(
            app,
            lifespan="off",
            access_log=False,
            log_config=None,
            log_level=None,
            timeout_graceful_shutdown=GRACEFUL_TIMEOUT,
            ssl_certfile=str(tls.cert_file) if tls else None,
            ssl_keyfile=str(tls.key_file) if tls else None,
        )

    async def _serve(self) -> None:
        self.forwarder = ProxyForwarder()
        if self.config.livereload.enabled:
            self.channel = ReloadChannel()
            self.bridge = ReloadBridge(
                self.root,
                self.channel,
                debounce_ms=self.config.livereload.debounce_ms,
            )

        apps = [create_app(self.config, self.root, self.forwarder, self.channel)]
        if self.channel is not None:
            apps.append(create_reload_app(self.channel))

        self._servers = [uvicorn.Server(self._uvicorn_config(app)) for app in apps]
        tasks = [
            asyncio.create_task(server.serve(sockets=[sock]))
            for server, sock in zip(self._servers, self.listeners)
        ]

        try:
            while not all(server.started for server in self._servers):
                failed = [task for task in tasks if task.done()]
                if failed:
                    error = failed[0].exception()
                    self._startup_error = error or LiveServeError("Listener exited during startup")
                    return
                await asyncio.sleep(POLL_INTERVAL / 5)

            if self.bridge is not None:
                await self.bridge.start()

            self._started.set()

            while not self._stop_requested.is_set():
                if any(task.done() for task in tasks):
                    logger.error("A listener stopped unexpectedly, shutting down")
                    break
                await asyncio.sleep(POLL_INTERVAL)
        finally:
            await self._shutdown(tasks)

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    async def _shutdown(self, tasks: list[asyncio.Task[None]]) -> None:
        if self.channel is not None:
            await self.channel.close()
        if self.bridge is not None:
            await self.bridge.stop()

        for server in self._servers:
            server.should_exit = True
        try:
            await asyncio.wait_for(
                asyncio.gather(*tasks, return_exceptions=True),
                timeout=SHUTDOWN_TIMEOUT,
            )
        except asyncio.TimeoutError:
            logger.warning("Listeners did not shut down in time, abandoning them")

        if self.forwarder is not None:
            await self.forwarder.aclose()

    def stop(self) -> None:
        """Stop serving and release every listener.

        Idempotent, and safe after a partially failed start.
        """
        with self._lock:
            if self._stopped:
                return
            self._stopped = True

        self._stop_requested.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(SHUTDOWN_TIMEOUT)
            if self._thread.is_alive():
                logger.warning("Server thread did not exit in time")

        for sock in self.listeners:
            sock.close()
        self.listeners.clear()
        logger.info(f"Stopped serving {self.root}")

    def wait(self) -> None:
        """Block until the instance stops."""
        while self._thread is not None and self._thread.is_alive():
            self._thread.join(0.5)


def start(config: ServerConfig, root: Path | str) -> ServerInstance:
    """Start serving a root directory.

    Args:
        config: Resolved configuration
        root: Directory to serve

    Returns:
        The running instance; the caller owns it and must stop it

    Raises:
        ConfigError: If root is not a directory
        BindError: If a listener address is already in use
    """
    root = Path(root).expanduser().resolve()
    if not root.is_dir():
        raise ConfigError(f"Served root is not a directory: {root}", root=str(root))

    instance = ServerInstance(config, root)
    try:
        instance.listeners.append(bind_socket(config.host, config.port))
        if config.livereload.enabled:
            instance.listeners.append(bind_socket(config.host, config.livereload.port))
        instance._launch()
    except BaseException:
        instance.stop()
        raise

    logger.info(f"Serving {root} at {config.url}")
    if config.livereload.enabled:
        logger.info(f"Livereload listening at {config.reload_url}")

    if config.open_browser:
        open_browser(browser_url(config))

    return instance


def stop(instance: ServerInstance) -> None:
    """Stop a running instance. Idempotent."""
    instance.stop()


__all__ = [
    "ServerInstance",
    "start",
    "stop",
    "bind_socket",
    "browser_url",
    "open_browser",
    "STARTUP_TIMEOUT",
    "SHUTDOWN_TIMEOUT",
]
