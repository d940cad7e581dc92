"""File system watcher feeding the reload channel.

Watches the served root using watchfiles and turns each native change
into a sequenced `ChangeEvent` for broadcast.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path

from watchfiles import Change, awatch

from liveserve.errors import WatchError
from liveserve.server.events import ChangeEvent, ChangeKind, SequenceCounter
from liveserve.server.reload import ReloadChannel

logger = logging.getLogger(__name__)

# Directories whose churn never warrants a browser reload
SKIP_DIRECTORIES = {
    ".git",
    ".hg",
    ".svn",
    "node_modules",
    "__pycache__",
    ".venv",
    "venv",
    ".pytest_cache",
    ".mypy_cache",
    ".ruff_cache",
}

# watchfiles polls its notifier in steps of this many milliseconds
WATCH_STEP_MS = 50

ChangeCallback = Callable[[ChangeKind, Path], Awaitable[None]]


def _change_to_kind(change: Change) -> ChangeKind:
    """Convert watchfiles Change enum to a ChangeKind."""
    if change == Change.added:
        return ChangeKind.CREATED
    elif change == Change.deleted:
        return ChangeKind.DELETED
    return ChangeKind.MODIFIED


def coalesce_changes(changes: Iterable[tuple[Change, str]]) -> list[tuple[ChangeKind, Path]]:
    """Merge one batch of raw changes into a single change per path.

    A path seen with more than one kind in the batch (typically a delete
    followed by a recreate from an editor's atomic save) is reported as
    modified when it still exists and deleted otherwise.

    Args:
        changes: Raw (change, path) pairs from one watchfiles batch

    Returns:
        (kind, path) pairs sorted by path
    """
    kinds: dict[str, set[ChangeKind]] = {}
    for change, path_str in changes:
        kinds.setdefault(path_str, set()).add(_change_to_kind(change))

    merged = []
    for path_str in sorted(kinds):
        seen = kinds[path_str]
        if len(seen) == 1:
            kind = next(iter(seen))
        elif Path(path_str).exists():
            kind = ChangeKind.MODIFIED
        else:
            kind = ChangeKind.DELETED
        merged.append((kind, Path(path_str)))
    return merged


class FileWatcher:
    """Async filesystem watcher for the served root.

    Attributes:
        root: Directory being watched
        callback: Async callback invoked once per coalesced change
        debounce_ms: Window in which watchfiles batches changes
        error: Failure that stopped the watcher, if any
    """

    def __init__(
        self,
        root: Path,
        callback: ChangeCallback,
        debounce_ms: int = 100,
        on_error: Callable[[WatchError], None] | None = None,
    ) -> None:
        """Initialize the file watcher.

        Args:
            root: Directory to watch recursively
            callback: Async callback(kind, path) invoked on changes
            debounce_ms: Debounce window in milliseconds
            on_error: Called once if the watch primitive fails
        """
        self.root = root.resolve()
        self.callback = callback
        self.debounce_ms = debounce_ms
        self.on_error = on_error
        self.error: WatchError | None = None
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    async def start(self) -> None:
        """Start watching in a background task."""
        if self._task is not None:
            logger.warning("FileWatcher already running")
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(self._watch())
        logger.info(f"Watching {self.root} for changes")

    async def stop(self) -> None:
        """Stop watching and wait for the background task to finish."""
        if self._task is None:
            return

        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug("FileWatcher stopped")

    async def _watch(self) -> None:
        """Main watch loop - monitors filesystem and invokes callback."""
        try:
            async for changes in awatch(
                self.root,
                stop_event=self._stop_event,
                watch_filter=self._watch_filter,
                debounce=max(self.debounce_ms, WATCH_STEP_MS),
                step=WATCH_STEP_MS,
            ):
                for kind, path in coalesce_changes(changes):
                    try:
                        await self.callback(kind, path)
                    except Exception as e:
                        logger.error(f"Error handling change to {path}: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.error = WatchError(f"Watching {self.root} failed: {e}", root=str(self.root))
            logger.error(self.error.message)
            if self.on_error is not None:
                self.on_error(self.error)

    def _watch_filter(self, change: Change, path: str) -> bool:
        """Filter function for watchfiles."""
        return self._should_process(Path(path))

    def _should_process(self, path: Path) -> bool:
        """Check if a change under this path should reach browsers."""
        try:
            parts = path.relative_to(self.root).parts
        except ValueError:
            parts = path.parts
        return not any(part in SKIP_DIRECTORIES for part in parts)

    @property
    def is_running(self) -> bool:
        """Check if the watcher is currently running."""
        return self._task is not None and not self._task.done()


class ReloadBridge:
    """Connects a FileWatcher on the served root to a ReloadChannel.

    Owns the instance-wide sequence counter, so events reach every client
    in one global order.
    """

    def __init__(self, root: Path, channel: ReloadChannel, debounce_ms: int = 100) -> None:
        self.root = root.resolve()
        self.channel = channel
        self.sequence = SequenceCounter()
        self.watcher = FileWatcher(
            self.root,
            self._on_change,
            debounce_ms=debounce_ms,
            on_error=channel.mark_degraded,
        )

    def make_event(self, kind: ChangeKind, path: Path) -> ChangeEvent:
        """Build the next sequenced event for a changed path."""
        try:
            relative = path.relative_to(self.root).as_posix()
        except ValueError:
            relative = path.as_posix()
        return ChangeEvent(
            path=relative,
            kind=kind,
            sequence=self.sequence.next(),
            timestamp=time.time(),
        )

    async def _on_change(self, kind: ChangeKind, path: Path) -> None:
        await self.channel.broadcast(self.make_event(kind, path))

    async def start(self) -> None:
        await self.watcher.start()

    async def stop(self) -> None:
        await self.watcher.stop()


__all__ = [
    "FileWatcher",
    "ReloadBridge",
    "coalesce_changes",
    "SKIP_DIRECTORIES",
]
