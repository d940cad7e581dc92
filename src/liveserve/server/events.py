"""Change events flowing from the file watcher to reload clients.

Defines the change event broadcast to browsers and the per-instance
sequence counter that orders them.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ChangeKind(str, Enum):
    """Kind of filesystem change."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class ChangeEvent:
    """A file change ready for broadcast.

    Attributes:
        path: Changed path relative to the served root, posix separators
        kind: What happened to the path
        sequence: Position in the instance's global emission order
        timestamp: Unix timestamp when the event was created
    """

    path: str
    kind: ChangeKind
    sequence: int
    timestamp: float = field(compare=False)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the reload wire message."""
        return {
            "type": "reload",
            "path": self.path,
            "kind": self.kind.value,
            "sequence": self.sequence,
            "timestamp": self.timestamp,
        }


class SequenceCounter:
    """Monotonically increasing sequence numbers, starting at 1."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._lock = threading.Lock()
        self._last = 0

    def next(self) -> int:
        with self._lock:
            self._last = next(self._counter)
            return self._last

    @property
    def last(self) -> int:
        """Most recently issued number, 0 before the first."""
        return self._last


__all__ = [
    "ChangeKind",
    "ChangeEvent",
    "SequenceCounter",
]
