"""Static file resolution for the served root.

Maps request paths onto the filesystem and decides between serving a
file, redirecting a directory to its slash form, rendering a listing, or
reporting nothing found. Resolution only reads the filesystem.
"""

from __future__ import annotations

import html
import logging
import re
import stat
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

from liveserve.errors import PathTraversalError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ListingEntry:
    """One child of a listed directory."""

    name: str
    is_dir: bool


@dataclass(frozen=True)
class FileResult:
    """Serve this regular file."""

    path: Path


@dataclass(frozen=True)
class RedirectResult:
    """Directory requested without trailing slash."""

    location: str


@dataclass(frozen=True)
class ListingResult:
    """Render a listing of a directory that has no default file."""

    directory: Path
    request_path: str
    entries: tuple[ListingEntry, ...]


@dataclass(frozen=True)
class NotFoundResult:
    """Nothing to serve."""

    request_path: str


Resolution = FileResult | RedirectResult | ListingResult | NotFoundResult


class StaticResolver:
    """Resolve request paths against one served root.

    Attributes:
        root: Absolute, resolved served root
        default_file: File served for directory requests
        directory_listing: Render listings when the default file is missing
    """

    def __init__(
        self,
        root: Path,
        default_file: str = "index.html",
        directory_listing: bool = False,
    ) -> None:
        self.root = root.resolve()
        self.default_file = default_file
        self.directory_listing = directory_listing

    def candidate_path(self, request_path: str) -> Path:
        """Map an already percent-decoded URL path under the root.

        Raises:
            PathTraversalError: If the path leaves the root, including via
                symlinks pointing outside it
        """
        if "\x00" in request_path or "\\" in request_path:
            raise PathTraversalError(request_path)

        parts = [part for part in request_path.split("/") if part not in ("", ".")]
        candidate = self.root.joinpath(*parts).resolve()

        if candidate != self.root and self.root not in candidate.parents:
            raise PathTraversalError(request_path)
        return candidate

    def resolve(self, request_path: str) -> Resolution:
        """Decide what to serve for a request path.

        Paths the filesystem cannot look up (names too long, unreadable
        directories) are reported as not found.

        Args:
            request_path: Percent-decoded URL path, starting with "/"

        Returns:
            One of FileResult, RedirectResult, ListingResult, NotFoundResult

        Raises:
            PathTraversalError: If the path escapes the root
        """
        candidate = self.candidate_path(request_path)

        try:
            mode = candidate.stat().st_mode
        except OSError as e:
            logger.debug(f"Cannot stat {candidate}: {e}")
            return NotFoundResult(request_path)

        if stat.S_ISREG(mode):
            return FileResult(candidate)

        if not stat.S_ISDIR(mode):
            return NotFoundResult(request_path)

        if not request_path.endswith("/"):
            return RedirectResult(f"{request_path}/")

        index = candidate / self.default_file
        try:
            if index.is_file():
                return FileResult(index)
            if self.directory_listing:
                return ListingResult(candidate, request_path, self.list_directory(candidate))
        except OSError as e:
            logger.debug(f"Cannot read directory {candidate}: {e}")

        return NotFoundResult(request_path)

    def list_directory(self, directory: Path) -> tuple[ListingEntry, ...]:
        """List immediate children sorted by name.

        Raises:
            OSError: If the directory itself cannot be read
        """
        entries = []
        for child in sorted(directory.iterdir(), key=lambda p: p.name):
            try:
                is_dir = child.is_dir()
            except OSError as e:
                logger.debug(f"Skipping unreadable entry {child}: {e}")
                continue
            entries.append(ListingEntry(name=child.name, is_dir=is_dir))
        return tuple(entries)


def render_listing(request_path: str, entries: tuple[ListingEntry, ...]) -> str:
    """Render a directory listing page."""
    title = html.escape(f"listing directory {request_path}")
    base = request_path if request_path.endswith("/") else f"{request_path}/"

    items = []
    if base != "/":
        items.append('<li><a href="../">../</a></li>')
    for entry in entries:
        name = f"{entry.name}/" if entry.is_dir else entry.name
        items.append(
            f'<li class="{"directory" if entry.is_dir else "file"}">'
            f'<a href="{html.escape(quote(base + name))}">{html.escape(name)}</a></li>'
        )

    return (
        "<!DOCTYPE html>\n"
        "<html>\n"
        f"<head><meta charset=\"utf-8\"><title>{title}</title></head>\n"
        "<body>\n"
        f"<h1>{title}</h1>\n"
        f"<ul id=\"files\">\n{chr(10).join(items)}\n</ul>\n"
        "</body>\n"
        "</html>\n"
    )


_BODY_CLOSE = re.compile(r"</body\s*>", re.IGNORECASE)


def inject_script(page: str, script_url: str) -> str:
    """Add a script tag before the last closing body tag of an HTML page."""
    tag = f'<script src="{html.escape(script_url)}" async></script>'
    matches = list(_BODY_CLOSE.finditer(page))
    if not matches:
        return page + tag
    position = matches[-1].start()
    return page[:position] + tag + page[position:]


__all__ = [
    "ListingEntry",
    "FileResult",
    "RedirectResult",
    "ListingResult",
    "NotFoundResult",
    "Resolution",
    "StaticResolver",
    "render_listing",
    "inject_script",
]
