"""Tests for the file watcher and its bridge to the reload channel."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest
from watchfiles import Change

from liveserve.errors import WatchError
from liveserve.server.events import ChangeKind
from liveserve.server.reload import ReloadChannel
from liveserve.server.watcher import FileWatcher, ReloadBridge, coalesce_changes


class RecordingChannel(ReloadChannel):
    """Channel that keeps every broadcast event."""

    def __init__(self) -> None:
        super().__init__()
        self.events: list[Any] = []

    async def broadcast(self, event: Any) -> int:
        self.events.append(event)
        return await super().broadcast(event)


# =============================================================================
# TestCoalesce
# =============================================================================


class TestCoalesceChanges:
    """Tests for merging one watchfiles batch."""

    def test_single_changes_map_to_kinds(self, tmp_path: Path) -> None:
        merged = coalesce_changes(
            {
                (Change.added, str(tmp_path / "b.html")),
                (Change.modified, str(tmp_path / "a.css")),
                (Change.deleted, str(tmp_path / "c.js")),
            }
        )

        assert merged == [
            (ChangeKind.MODIFIED, tmp_path / "a.css"),
            (ChangeKind.CREATED, tmp_path / "b.html"),
            (ChangeKind.DELETED, tmp_path / "c.js"),
        ]

    def test_repeated_changes_merge_to_one(self, tmp_path: Path) -> None:
        path = tmp_path / "index.html"
        path.write_text("x")

        merged = coalesce_changes([(Change.modified, str(path)), (Change.modified, str(path))])

        assert merged == [(ChangeKind.MODIFIED, path)]

    def test_delete_and_recreate_is_modified(self, tmp_path: Path) -> None:
        path = tmp_path / "index.html"
        path.write_text("saved atomically")

        merged = coalesce_changes([(Change.deleted, str(path)), (Change.added, str(path))])

        assert merged == [(ChangeKind.MODIFIED, path)]

    def test_create_then_delete_is_deleted(self, tmp_path: Path) -> None:
        path = tmp_path / "tmp.swp"

        merged = coalesce_changes([(Change.added, str(path)), (Change.deleted, str(path))])

        assert merged == [(ChangeKind.DELETED, path)]


# =============================================================================
# TestFileWatcher
# =============================================================================


class TestFileWatcher:
    """Tests for FileWatcher filtering and failure handling."""

    def test_skip_directories(self, tmp_path: Path) -> None:
        async def noop(kind: ChangeKind, path: Path) -> None:
            pass

        watcher = FileWatcher(tmp_path, noop)

        assert watcher._should_process(tmp_path / "index.html")
        assert watcher._should_process(tmp_path / "css" / "site.css")
        assert not watcher._should_process(tmp_path / ".git" / "HEAD")
        assert not watcher._should_process(tmp_path / "node_modules" / "x" / "index.js")

    @pytest.mark.asyncio
    async def test_missing_root_degrades_channel(self, tmp_path: Path) -> None:
        channel = ReloadChannel()
        bridge = ReloadBridge(tmp_path / "missing", channel)

        await bridge.start()
        for _ in range(200):
            if not bridge.watcher.is_running:
                break
            await asyncio.sleep(0.01)
        await bridge.stop()

        assert isinstance(bridge.watcher.error, WatchError)
        assert channel.degraded

    @pytest.mark.asyncio
    async def test_stop_without_start(self, tmp_path: Path) -> None:
        async def noop(kind: ChangeKind, path: Path) -> None:
            pass

        watcher = FileWatcher(tmp_path, noop)
        await watcher.stop()
        assert not watcher.is_running


# =============================================================================
# TestReloadBridge
# =============================================================================


class TestReloadBridge:
    """Tests for sequencing and end-to-end delivery."""

    def test_events_are_sequenced_and_relative(self, tmp_path: Path) -> None:
        bridge = ReloadBridge(tmp_path, ReloadChannel())

        first = bridge.make_event(ChangeKind.MODIFIED, tmp_path.resolve() / "css" / "site.css")
        second = bridge.make_event(ChangeKind.DELETED, tmp_path.resolve() / "index.html")

        assert (first.path, first.sequence) == ("css/site.css", 1)
        assert (second.path, second.kind, second.sequence) == ("index.html", ChangeKind.DELETED, 2)

    @pytest.mark.asyncio
    async def test_file_change_reaches_channel(self, tmp_path: Path) -> None:
        channel = RecordingChannel()
        bridge = ReloadBridge(tmp_path, channel, debounce_ms=50)

        await bridge.start()
        try:
            # Give the notifier time to register before touching files
            await asyncio.sleep(0.3)
            (tmp_path / "index.html").write_text("Hello World")

            for _ in range(500):
                if channel.events:
                    break
                await asyncio.sleep(0.01)
        finally:
            await bridge.stop()
            await channel.close()

        assert channel.events, "no change event within 5s"
        assert channel.events[0].path == "index.html"
        assert channel.events[0].kind in (ChangeKind.CREATED, ChangeKind.MODIFIED)
        sequences = [event.sequence for event in channel.events]
        assert sequences == list(range(1, len(sequences) + 1))
