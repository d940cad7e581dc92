"""liveserve server - request dispatch, livereload and lifecycle.

Serves a directory over HTTP(S), forwards configured path prefixes to
other origins, and pushes file changes to connected browsers:

- Dispatches each request to livereload, a proxy rule or the static root
- Watches the served root and broadcasts sequenced change events
- Runs the listeners on a private event loop owned by a ServerInstance

Example:
    Start from the CLI:

        $ liveserve serve site --livereload
        Serving /home/me/site at http://localhost:8000
        Livereload on http://localhost:35729

    Or use the Python API:

        >>> from liveserve.config import resolve_config
        >>> from liveserve.server import start
        >>>
        >>> config = resolve_config({"port": 8000, "livereload": True})
        >>> with start(config, "site") as instance:
        ...     instance.wait()

Endpoints:
    GET /livereload.js    - Browser client script (reload port, and main port when enabled)
    WS  /livereload       - Change notifications
    GET /status           - Reload channel status (reload port only)
    *   /<proxy source>*  - Forwarded to the proxy target
    GET /*                - Static files and directory listings
"""

from liveserve.server.app import RequestInfo, create_app, create_reload_app, dispatch
from liveserve.server.events import ChangeEvent, ChangeKind, SequenceCounter
from liveserve.server.lifecycle import ServerInstance, start, stop
from liveserve.server.proxy import ProxyForwarder, ProxyRouter
from liveserve.server.reload import ClientState, ReloadChannel, ReloadClient
from liveserve.server.static import StaticResolver, render_listing
from liveserve.server.watcher import FileWatcher, ReloadBridge

__all__ = [
    # Dispatch
    "RequestInfo",
    "dispatch",
    "create_app",
    "create_reload_app",
    # Events
    "ChangeEvent",
    "ChangeKind",
    "SequenceCounter",
    # Lifecycle
    "ServerInstance",
    "start",
    "stop",
    # Proxy
    "ProxyRouter",
    "ProxyForwarder",
    # Reload
    "ClientState",
    "ReloadChannel",
    "ReloadClient",
    # Static
    "StaticResolver",
    "render_listing",
    # Watcher
    "FileWatcher",
    "ReloadBridge",
]
