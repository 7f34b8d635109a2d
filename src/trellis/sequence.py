"""Per-key monotonically increasing counters for computed attributes."""

from __future__ import annotations

import threading
from collections.abc import Hashable


class Sequence:
    """Hands out 0, 1, 2, ... independently for each key until reset."""

    def __init__(self) -> None:
        self._counters: dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def next(self, key: Hashable) -> int:
        with self._lock:
            value = self._counters.get(key, 0)
            self._counters[key] = value + 1
            return value

    def peek(self, key: Hashable) -> int:
        return self._counters.get(key, 0)

    def reset(self, key: Hashable | None = None) -> None:
        with self._lock:
            if key is None:
                self._counters.clear()
            else:
                self._counters.pop(key, None)
