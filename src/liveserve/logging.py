"""Logging configuration for liveserve."""

from __future__ import annotations

import logging
from typing import Literal

from rich.console import Console
from rich.logging import RichHandler

# Console instances for stdout/stderr
console = Console()
err_console = Console(stderr=True)

VerbosityLevel = Literal["quiet", "normal", "verbose"]

LEVELS = {
    "quiet": logging.ERROR,
    "normal": logging.INFO,
    "verbose": logging.DEBUG,
}


def setup_logging(verbosity: VerbosityLevel = "normal") -> logging.Logger:
    """Route liveserve and uvicorn diagnostics to one rich handler on stderr.

    Request logging is left off: uvicorn's access logger is never
    attached, and httpx's per-request INFO lines from the proxy forwarder
    only show in verbose mode.
    """
    handler = RichHandler(
        console=err_console,
        show_time=verbosity == "verbose",
        show_path=verbosity == "verbose",
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger = logging.getLogger("liveserve")
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(LEVELS[verbosity])

    uvicorn_logger = logging.getLogger("uvicorn.error")
    uvicorn_logger.handlers.clear()
    uvicorn_logger.addHandler(handler)
    uvicorn_logger.setLevel(logging.INFO if verbosity == "verbose" else logging.WARNING)
    uvicorn_logger.propagate = False

    logging.getLogger("httpx").setLevel(logging.DEBUG if verbosity == "verbose" else logging.WARNING)

    return logger


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    console.print(f"[green]{message}[/green]")


def print_info(message: str) -> None:
    console.print(message)
