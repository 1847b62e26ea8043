"""Fixed-window rate limiting for webhook triggers, backed by ``limits``."""

import math
import time
from dataclasses import dataclass

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int | None = None  # seconds until the window resets


class RateLimiter:
    """Allows ``max_requests`` per key in each ``window_seconds`` window.

    Counters live in in-process memory storage owned by this instance (one per
    application, kept on ``app.state``), so separate processes do not share counts.
    """

    def __init__(self, max_requests: int = 10, window_seconds: int = 60):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._item = RateLimitItemPerSecond(max_requests, window_seconds)
        self._storage = MemoryStorage()
        self._limiter = FixedWindowRateLimiter(self._storage)

    def check(self, key: str) -> RateLimitDecision:
        """Count one request for ``key`` if the window still has room."""
        if self._limiter.hit(self._item, key):
            return RateLimitDecision(allowed=True)

        reset_time, _ = self._limiter.get_window_stats(self._item, key)
        return RateLimitDecision(
            allowed=False, retry_after=max(1, math.ceil(reset_time - time.time()))
        )

    def reset(self) -> None:
        self._storage.reset()
