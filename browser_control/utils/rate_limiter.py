"""
Rate limiting utility for tool calls and outbound requests
"""
import threading
import time
from typing import Callable


class RateLimiter:
    def __init__(self, max_requests: int, time_window_seconds: float,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize a fixed-interval rate limiter.

        The token count is refilled to max_requests at the start of every
        window. Callers that find no token left are rejected, never queued.

        Args:
            max_requests: Maximum number of requests allowed in the time window
            time_window_seconds: Time window in seconds
            clock: Monotonic time source
        """
        self.max_requests = max_requests
        self.time_window_seconds = time_window_seconds
        self.clock = clock
        self.tokens = max_requests
        self.window_start = clock()
        self.lock = threading.Lock()

    def _refill(self, now: float):
        if now - self.window_start >= self.time_window_seconds:
            self.tokens = self.max_requests
            self.window_start = now

    def can_make_request(self) -> bool:
        """Take a token if one is available in the current window."""
        with self.lock:
            self._refill(self.clock())
            if self.tokens > 0:
                self.tokens -= 1
                return True
            return False

    def retry_after(self) -> float:
        """Seconds until the next refill."""
        with self.lock:
            elapsed = self.clock() - self.window_start
            return max(0.0, self.time_window_seconds - elapsed)

    def has_capacity(self) -> bool:
        """Whether a token is available, without taking it."""
        with self.lock:
            self._refill(self.clock())
            return self.tokens > 0
