"""Time-bounded cache for expensive monitor queries."""

import time
from typing import Any, Callable


class MetricsCache:
    """Key/value cache where each entry expires ``ttl_seconds`` after it was set.

    Owned by whoever constructs the monitor; there is no shared module-level
    instance. Entries are only evicted on read, which is enough for the handful
    of keys the monitor uses.
    """

    def __init__(self, ttl_seconds: float = 60, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (self._clock(), value)

    def clear(self) -> None:
        self._entries.clear()
