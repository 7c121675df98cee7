"""Bounded observation buffers for console and network events.

The session's Playwright listeners append into these; nothing else writes to
them.  Capacity is fixed at construction and the oldest entries are evicted
first once it is exceeded.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Iterator
from dataclasses import asdict, dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")

CONSOLE_CAPACITY = 500
NETWORK_CAPACITY = 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ConsoleRecord:
    """One console message reported by the page."""

    level: str
    text: str
    ts: int = field(default_factory=_now_ms)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class NetworkRecord:
    """One finished or failed request.  ``status`` is 0 when the request failed."""

    url: str
    method: str
    status: int = 0
    failure: str | None = None
    ts: int = field(default_factory=_now_ms)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class RingBuffer(Generic[T]):
    """Fixed-capacity FIFO that silently drops its oldest entry on overflow."""

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._items: deque[T] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._items.maxlen or 0

    def append(self, item: T) -> None:
        """Append *item*, evicting the oldest entry if full."""
        self._items.append(item)

    def last(self, n: int | None = None) -> list[T]:
        """Return the newest *n* entries (all when ``None``) in insertion order."""
        items = list(self._items)
        if n is None:
            return items
        if n <= 0:
            return []
        return items[-n:]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))
