"""Error handling framework for liveserve."""

from __future__ import annotations

from enum import IntEnum
from typing import Any


class ExitCode(IntEnum):
    """liveserve CLI exit codes."""

    SUCCESS = 0
    CONFIG_ERROR = 1  # Invalid options (user fixable)
    BIND_ERROR = 2  # Port already in use
    FATAL_ERROR = 3  # Unexpected crash


class LiveServeError(Exception):
    """Base exception for liveserve errors."""

    exit_code: ExitCode = ExitCode.FATAL_ERROR
    status_code: int = 500

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for JSON output."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "exit_code": self.exit_code,
            **self.context,
        }


class ConfigError(LiveServeError):
    """Invalid user configuration. Fatal at start."""

    exit_code = ExitCode.CONFIG_ERROR


class BindError(LiveServeError):
    """Listener address already in use. Fatal at start."""

    exit_code = ExitCode.BIND_ERROR

    def __init__(self, host: str, port: int, reason: str) -> None:
        super().__init__(f"Cannot bind {host}:{port}: {reason}", host=host, port=port)
        self.host = host
        self.port = port


class PathTraversalError(LiveServeError):
    """Request path escapes the served root."""

    status_code = 403

    def __init__(self, request_path: str) -> None:
        super().__init__(f"Path escapes served root: {request_path}", request_path=request_path)
        self.request_path = request_path


class NotFoundError(LiveServeError):
    """Nothing to serve for the request path."""

    status_code = 404

    def __init__(self, request_path: str, method: str = "GET") -> None:
        super().__init__(f"Cannot {method} {request_path}", request_path=request_path, method=method)
        self.request_path = request_path
        self.method = method


class ProxyForwardError(LiveServeError):
    """Upstream proxy target unreachable or timed out."""

    status_code = 502

    def __init__(self, message: str, target: str) -> None:
        super().__init__(message, target=target)
        self.target = target


class WatchError(LiveServeError):
    """Filesystem watch primitive failed."""


__all__ = [
    "ExitCode",
    "LiveServeError",
    "ConfigError",
    "BindError",
    "PathTraversalError",
    "NotFoundError",
    "ProxyForwardError",
    "WatchError",
]
