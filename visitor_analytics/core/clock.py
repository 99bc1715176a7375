import threading
import time
from typing import Protocol

NS_PER_SECOND = 1_000_000_000


class Clock(Protocol):
    """Time provider interface."""

    def now_ns(self) -> int:
        """Current wall-clock time in nanoseconds since the epoch."""
        ...


class SystemClock:
    """Wall clock that never hands out the same (or an earlier) timestamp twice"""

    def __init__(self):
        self._last = 0
        self._lock = threading.Lock()

    def now_ns(self) -> int:
        with self._lock:
            now = max(time.time_ns(), self._last + 1)
            self._last = now
            return now


def seconds_to_ns(seconds: float) -> int:
    return int(seconds * NS_PER_SECOND)
