"""Throttling of console output for a server."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional


class _Rate:
    """Allows at most ``limit`` events in each window of ``period`` seconds."""

    def __init__(self, limit: int, period: float) -> None:
        self._limit = limit
        self._period = period
        self._lock = threading.Lock()
        self._count = 0
        self._window_start = time.monotonic()

    def try_acquire(self) -> bool:
        with self._lock:
            now = time.monotonic()
            if now - self._window_start >= self._period:
                self._count = 0
                self._window_start = now
            if self._count >= self._limit:
                return False
            self._count += 1
            return True

    def reset(self) -> None:
        with self._lock:
            self._count = 0
            self._window_start = time.monotonic()


class ConsoleThrottle:
    """Limits how many console lines pass in a time period.

    When the limit is exceeded the ``strike`` callback runs once; it runs
    again only after output has been allowed through in between.
    """

    def __init__(
        self,
        lines: int,
        period: float,
        strike: Optional[Callable[[], None]] = None,
    ) -> None:
        self._limit = _Rate(lines, period)
        self._strike_lock = threading.Lock()
        self.strike = strike

    def allow(self) -> bool:
        """Return True if more output may be processed right now."""
        if not self._limit.try_acquire():
            if self._strike_lock.acquire(blocking=False) and self.strike is not None:
                self.strike()
            return False
        try:
            self._strike_lock.release()
        except RuntimeError:
            pass
        return True

    def reset(self) -> None:
        """Reset the internal rate limiter."""
        self._limit.reset()