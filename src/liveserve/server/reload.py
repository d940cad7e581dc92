"""Livereload control channel.

Keeps the set of connected browsers and pushes change events to them over
WebSocket. Each client owns an outbound queue drained by its own sender
task, so broadcasting never waits on a slow or vanished browser.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any

from fastapi import WebSocket
from fastapi.responses import Response

from liveserve.errors import WatchError
from liveserve.paths import LIVERELOAD_SOCKET_PATH
from liveserve.server.events import ChangeEvent

logger = logging.getLogger(__name__)

# Seconds allowed for a close handshake during shutdown
CLOSE_TIMEOUT = 1.0

# Undelivered events a client may fall behind by before it is dropped
MAX_PENDING_EVENTS = 100

CLIENT_SCRIPT = """\
/* liveserve livereload client */
(function () {
  var script = document.currentScript;
  var origin = script && script.src ? new URL(script.src) : window.location;
  var scheme = origin.protocol === "https:" ? "wss:" : "ws:";
  var url = scheme + "//" + origin.host + "%(socket_path)s";

  function reloadStylesheets() {
    var links = document.querySelectorAll('link[rel="stylesheet"]');
    Array.prototype.forEach.call(links, function (link) {
      var href = new URL(link.href);
      href.searchParams.set("livereload", Date.now());
      link.href = href.toString();
    });
  }

  function connect() {
    var socket = new WebSocket(url);
    socket.onmessage = function (message) {
      var data = JSON.parse(message.data);
      if (data.type !== "reload") {
        return;
      }
      if (/\\.css$/i.test(data.path) && data.kind !== "deleted") {
        reloadStylesheets();
      } else {
        window.location.reload();
      }
    };
    socket.onclose = function () {
      setTimeout(connect, 1000);
    };
  }

  connect();
})();
""" % {"socket_path": LIVERELOAD_SOCKET_PATH}


class ClientState(str, Enum):
    """Lifecycle of a reload client connection."""

    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    CLOSED = "closed"


class ReloadClient:
    """One browser connected to the control channel.

    Attributes:
        websocket: Underlying connection
        state: Current lifecycle state
        subscribed_at: Time the client entered SUBSCRIBED, None before
        last_sequence: Sequence of the last event delivered
    """

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.state = ClientState.CONNECTING
        self.subscribed_at: float | None = None
        self.last_sequence = 0
        self.queue: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=MAX_PENDING_EVENTS)
        self.sender: asyncio.Task[None] | None = None

    def __repr__(self) -> str:
        return f"<ReloadClient {self.state.value} last_sequence={self.last_sequence}>"


class ReloadChannel:
    """Broadcast change events to subscribed reload clients.

    The client set is the only state shared between connection handlers
    and the watcher; every access goes through `_lock`, and broadcasts
    iterate over a snapshot.
    """

    def __init__(self) -> None:
        self._clients: set[ReloadClient] = set()
        self._lock = asyncio.Lock()
        self._closed = False
        self.degraded = False
        self._closing: set[asyncio.Task[None]] = set()

    async def subscribe(self, websocket: WebSocket) -> ReloadClient | None:
        """Complete the handshake and register a new client.

        Args:
            websocket: Incoming WebSocket connection

        Returns:
            The subscribed client, or None if the channel is closed
        """
        client = ReloadClient(websocket)
        if self._closed:
            await websocket.close(code=1001)
            return None

        await websocket.accept()

        async with self._lock:
            if self._closed:
                client.state = ClientState.CLOSED
            else:
                client.state = ClientState.SUBSCRIBED
                client.subscribed_at = time.time()
                self._clients.add(client)

        if client.state is ClientState.CLOSED:
            await websocket.close(code=1001)
            return None

        # Events broadcast from here on wait in the queue until hello is out
        try:
            await websocket.send_json(
                {
                    "type": "hello",
                    "message": "Connected to liveserve",
                    "timestamp": time.time(),
                }
            )
        except Exception as e:
            logger.debug(f"Reload client went away during handshake: {e}")
            await self._remove(client)
            return None

        if client.state is ClientState.CLOSED:
            return None

        client.sender = asyncio.create_task(self._deliver(client))
        logger.info(f"Reload client connected, total: {len(self._clients)}")
        return client

    async def unsubscribe(self, client: ReloadClient) -> None:
        """Remove a client and stop its sender."""
        await self._remove(client)
        if client.sender is not None and client.sender is not asyncio.current_task():
            client.sender.cancel()
            try:
                await client.sender
            except asyncio.CancelledError:
                pass

    async def _remove(self, client: ReloadClient) -> None:
        async with self._lock:
            was_subscribed = client in self._clients
            self._clients.discard(client)
            client.state = ClientState.CLOSED
        if was_subscribed:
            logger.info(f"Reload client disconnected, total: {len(self._clients)}")

    async def _deliver(self, client: ReloadClient) -> None:
        """Drain one client's queue in order until sending fails."""
        while True:
            event = await client.queue.get()
            try:
                await client.websocket.send_json(event.to_dict())
            except Exception as e:
                # Transport errors differ between servers; any of them ends the client
                logger.debug(f"Dropping reload client after send failure: {e}")
                break
            client.last_sequence = event.sequence
        await self._remove(client)

    async def broadcast(self, event: ChangeEvent) -> int:
        """Queue an event for every currently subscribed client.

        Returns immediately; delivery happens on each client's sender.
        A client whose queue is already full is dropped instead.

        Args:
            event: Change event to push

        Returns:
            Number of clients the event was queued for
        """
        if self.degraded:
            logger.debug(f"Reload channel degraded, dropping event {event.sequence}")
            return 0

        async with self._lock:
            clients = [c for c in self._clients if c.state is ClientState.SUBSCRIBED]

        lagging = []
        for client in clients:
            try:
                client.queue.put_nowait(event)
            except asyncio.QueueFull:
                lagging.append(client)

        for client in lagging:
            await self._drop(client)

        queued = len(clients) - len(lagging)
        logger.debug(f"Queued {event.kind.value} {event.path} #{event.sequence} for {queued} clients")
        return queued

    async def _drop(self, client: ReloadClient) -> None:
        """Disconnect a client that stopped reading, without waiting on it."""
        logger.warning(f"Dropping reload client {client.queue.qsize()} events behind")
        await self._remove(client)
        if client.sender is not None:
            client.sender.cancel()
        task = asyncio.create_task(self._close_socket(client))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _close_socket(self, client: ReloadClient) -> None:
        try:
            await asyncio.wait_for(client.websocket.close(code=1001), timeout=CLOSE_TIMEOUT)
        except Exception as e:
            logger.debug(f"Reload client close failed: {e}")

    def mark_degraded(self, error: WatchError) -> None:
        """Stop broadcasting after the watch primitive failed."""
        self.degraded = True
        logger.warning(f"Livereload disabled, file watching failed: {error.message}")

    async def close(self) -> None:
        """Close every client and refuse new subscriptions."""
        async with self._lock:
            self._closed = True
            clients = list(self._clients)
            self._clients.clear()

        for client in clients:
            client.state = ClientState.CLOSED
            if client.sender is not None:
                client.sender.cancel()
            await self._close_socket(client)

        pending = [c.sender for c in clients if c.sender is not None] + list(self._closing)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    @property
    def client_count(self) -> int:
        """Get number of subscribed clients."""
        return len(self._clients)

    @property
    def closed(self) -> bool:
        return self._closed


async def serve_client(channel: ReloadChannel, websocket: WebSocket) -> None:
    """Run one control-channel connection until the browser goes away."""
    client = await channel.subscribe(websocket)
    if client is None:
        return

    try:
        while True:
            message: dict[str, Any] = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            # Browsers send nothing meaningful; ignore pings and stray frames
    finally:
        await channel.unsubscribe(client)


def client_script_response() -> Response:
    """Response carrying the browser-side livereload script."""
    return Response(
        CLIENT_SCRIPT,
        media_type="application/javascript",
        headers={"Cache-Control": "no-store"},
    )


__all__ = [
    "ClientState",
    "ReloadClient",
    "ReloadChannel",
    "serve_client",
    "client_script_response",
    "CLIENT_SCRIPT",
]
