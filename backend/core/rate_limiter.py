import time
from collections import OrderedDict, deque
from typing import Callable, Deque

from core.exceptions import RateLimitExceededError


class SlidingWindowRateLimiter:
    """Per-key sliding-window limiter.

    Keys are kept in least-recently-used order: idle keys fall off the front,
    and the table never holds more than ``max_keys`` entries.
    ``limit <= 0`` turns the limiter off.
    """

    def __init__(
        self,
        limit: int,
        window_s: float,
        max_keys: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_s = window_s
        self.max_keys = max(1, max_keys)
        self._clock = clock
        self._hits: "OrderedDict[str, Deque[float]]" = OrderedDict()

    @property
    def enabled(self) -> bool:
        return self.limit > 0

    def check(self, key: str) -> None:
        """Record one hit for ``key`` or raise RateLimitExceededError."""
        if not self.enabled:
            return
        now = self._clock()
        cutoff = now - self.window_s
        self._evict_idle(cutoff)

        hits = self._hits.get(key)
        if hits is None:
            hits = self._hits[key] = deque()
        else:
            self._hits.move_to_end(key)
        while hits and hits[0] <= cutoff:
            hits.popleft()

        if len(hits) >= self.limit:
            raise RateLimitExceededError(key, retry_after_s=hits[0] + self.window_s - now)

        hits.append(now)
        while len(self._hits) > self.max_keys:
            self._hits.popitem(last=False)

    def _evict_idle(self, cutoff: float) -> None:
        # LRU order means the first non-idle key ends the scan
        while self._hits:
            key, hits = next(iter(self._hits.items()))
            if hits and hits[-1] > cutoff:
                break
            del self._hits[key]

    def __len__(self) -> int:
        return len(self._hits)
