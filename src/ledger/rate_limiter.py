from __future__ import annotations

import time
from collections import deque
from typing import Callable, Deque


class RateLimitError(RuntimeError):
    """Raised when a non-blocking acquire would exceed the rate limit."""


class SlidingWindowRateLimiter:
    """
    Sliding-window limiter for outbound RPC calls.

    - At most `max_calls` permits are granted within any `per_seconds` window.
    - `acquire(blocking=True)` sleeps until a permit frees up and returns the
      number of seconds spent waiting.
    - `acquire(blocking=False)` raises `RateLimitError` instead of waiting.

    The keeper drives every call from one loop, so the limiter keeps no lock.
    Public RPC endpoints throttle per IP; this only smooths our own bursts.
    """

    def __init__(
        self,
        max_calls: int,
        per_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_calls <= 0:
            raise ValueError("max_calls must be > 0")
        if per_seconds <= 0:
            raise ValueError("per_seconds must be > 0")
        self.max_calls = max_calls
        self.per_seconds = per_seconds
        self._granted: Deque[float] = deque()
        self._clock = clock
        self._sleep = sleep

    def wait_time(self) -> float:
        """Seconds until the next permit is available (0.0 if one is free now)."""
        now = self._clock()
        horizon = now - self.per_seconds
        while self._granted and self._granted[0] <= horizon:
            self._granted.popleft()
        if len(self._granted) < self.max_calls:
            return 0.0
        return max(0.0, self._granted[0] + self.per_seconds - now)

    def acquire(self, *, blocking: bool = True) -> float:
        waited = 0.0
        while True:
            delay = self.wait_time()
            if delay == 0.0:
                self._granted.append(self._clock())
                return waited
            if not blocking:
                raise RateLimitError(f"rate limit exceeded; next slot in {delay:.2f}s")
            self._sleep(delay)
            waited += delay


__all__ = ["RateLimitError", "SlidingWindowRateLimiter"]
