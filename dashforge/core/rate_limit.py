"""
Best-effort per-process rate limiting.

FixedWindowRateLimiter counts requests per caller key in fixed windows. State
lives in process memory: every worker process and every instance keeps its
own counters, so the effective limit across a deployment is the per-process
limit times the number of processes. Counters are lost on restart.

Usage:
    limiter = FixedWindowRateLimiter(max_requests=60, window_seconds=60)
    if not limiter.hit("user-123"):
        raise ServiceError(ErrorCode.RATE_LIMITED, "Too many requests")
"""

import threading
import time
from typing import Callable, Dict, Tuple


class FixedWindowRateLimiter:
    """
    Fixed-window request counter.

    Args:
        max_requests: Requests allowed per key per window.
        window_seconds: Window length.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (window start, count)
        self._windows: Dict[str, Tuple[float, int]] = {}

    def hit(self, key: str) -> bool:
        """Count one request for `key`; False when over the limit."""
        now = self._clock()
        with self._lock:
            start, count = self._windows.get(key, (now, 0))
            if now - start >= self.window_seconds:
                start, count = now, 0
            if count >= self.max_requests:
                self._windows[key] = (start, count)
                return False
            self._windows[key] = (start, count + 1)
            self._prune(now)
            return True

    def retry_after(self, key: str) -> float:
        """Seconds until the current window of `key` resets."""
        now = self._clock()
        with self._lock:
            start, _ = self._windows.get(key, (now, 0))
        return max(0.0, self.window_seconds - (now - start))

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _prune(self, now: float) -> None:
        expired = [k for k, (start, _) in self._windows.items() if now - start >= self.window_seconds]
        for key in expired:
            del self._windows[key]
