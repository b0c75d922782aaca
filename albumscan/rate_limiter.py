"""Token bucket pacing outbound catalog requests."""

import functools
import threading
import time

from .config import DISCOGS_RATE_PER_MINUTE


class TokenBucket:
    """
    Thread-safe token bucket.

    ``rate_per_minute`` tokens are added per minute, up to ``capacity``
    (defaults to one minute's worth). ``clock`` and ``sleep`` are injectable
    so tests never wait in real time.
    """

    def __init__(self, rate_per_minute=60, capacity=None, clock=time.monotonic, sleep=time.sleep):
        if rate_per_minute <= 0:
            raise ValueError("rate_per_minute must be positive")
        self.rate = rate_per_minute / 60.0  # tokens per second
        self.capacity = float(capacity or rate_per_minute)
        self.tokens = self.capacity
        self.clock = clock
        self.sleep = sleep
        self.last = clock()
        self.lock = threading.Lock()

    def _refill(self):
        now = self.clock()
        self.tokens = min(self.capacity, self.tokens + (now - self.last) * self.rate)
        self.last = now

    def acquire(self, tokens=1):
        with self.lock:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return True
            return False

    def delay(self, tokens=1):
        """Seconds until ``tokens`` are available; 0 if they are now."""
        with self.lock:
            self._refill()
            return max(0.0, (tokens - self.tokens) / self.rate)

    def wait(self, tokens=1):
        while not self.acquire(tokens):
            self.sleep(max(self.delay(tokens), 0.01))


# Default bucket shared by every Discogs client in this process
discogs_bucket = TokenBucket(rate_per_minute=DISCOGS_RATE_PER_MINUTE)


def rate_limited(method):
    """Take a token from the instance's ``bucket`` before each call."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        self.bucket.wait(1)
        return method(self, *args, **kwargs)

    return wrapper
