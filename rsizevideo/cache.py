# rsizevideo/cache.py
from __future__ import annotations

import time
from collections import OrderedDict
from typing import Any, Callable, Optional, Tuple


class ResponseCache:
    """Small in-memory key -> (value, expiry) map for repeated status polls.

    Advisory only: a miss always falls back to the job store.
    """

    def __init__(self, max_entries: int = 1024, clock: Callable[[], float] = time.monotonic):
        self._entries: "OrderedDict[str, Tuple[Any, float]]" = OrderedDict()
        self._max_entries = max_entries
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        item = self._entries.get(key)
        if item is None:
            return None
        value, expires = item
        if self._clock() >= expires:
            self._entries.pop(key, None)
            return None
        self._entries.move_to_end(key)
        return value

    def put(self, key: str, value: Any, ttl: float) -> None:
        if ttl <= 0:
            return
        self._entries[key] = (value, self._clock() + ttl)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
