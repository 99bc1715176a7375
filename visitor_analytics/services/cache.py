import threading
from dataclasses import dataclass
from typing import Any, Callable, Hashable

import structlog

from visitor_analytics.core.clock import Clock, seconds_to_ns

logger = structlog.get_logger()


@dataclass(frozen=True)
class CachedValue:
    value: Any
    computed_at_ns: int


class StatsCache:
    """
    Short-TTL memoization for expensive statistics, one slot per key.

    A value is only published once fully computed; two callers racing on a
    stale slot may both recompute, and the last one wins.
    """

    def __init__(self, clock: Clock, ttl_seconds: float = 60):
        self.clock = clock
        self.ttl_ns = seconds_to_ns(ttl_seconds)
        self._entries: dict[Hashable, CachedValue] = {}
        self._lock = threading.Lock()

    def get_or_compute(self, key: Hashable, compute: Callable[[], Any]) -> Any:
        now_ns = self.clock.now_ns()
        with self._lock:
            cached = self._entries.get(key)

        if cached is not None and now_ns - cached.computed_at_ns <= self.ttl_ns:
            return cached.value

        logger.debug("stats_cache_miss", key=str(key))
        value = compute()

        with self._lock:
            self._entries[key] = CachedValue(value, self.clock.now_ns())
        return value

    def invalidate(self, key: Hashable | None = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
