"""Shared fixtures for liveserve tests."""

from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture
def site(tmp_path: Path) -> Path:
    """Served root with index and default pages, a stylesheet and a subdirectory."""
    root = tmp_path / "site"
    root.mkdir()
    (root / "index.html").write_text("<html><body><h1>Hello World</h1></body></html>\n")
    (root / "default.html").write_text("<html><body><h1>Default</h1></body></html>\n")
    (root / "style.css").write_text("body { color: red; }\n")
    (root / "sub").mkdir()
    (root / "sub" / "index.html").write_text("<html><body>Sub page</body></html>\n")
    # Outside the root, reachable only through traversal
    (tmp_path / "secret.txt").write_text("top secret\n")
    return root


@pytest.fixture
def index_missing_dir(tmp_path: Path) -> Path:
    """Served root without an index file."""
    root = tmp_path / "directoryIndexMissing"
    root.mkdir()
    (root / "b.txt").write_text("b\n")
    (root / "a.txt").write_text("a\n")
    (root / "nested").mkdir()
    return root


@pytest.fixture
def proxied_dir(tmp_path: Path) -> Path:
    """Root served by the upstream instance in proxy tests."""
    root = tmp_path / "directoryProxied"
    root.mkdir()
    (root / "index.html").write_text("<html><body>I am Ron Burgandy?</body></html>\n")
    return root
