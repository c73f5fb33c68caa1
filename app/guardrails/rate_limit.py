import threading
import time
from collections import defaultdict
from typing import Callable

from fastapi import HTTPException
from starlette.requests import Request


class SimpleRateLimiter:
    """Sliding-window rate limiter; in-memory (per process). Used by API to cap requests per client IP.
    Why available: Protects the API (and the single job worker behind it) from abuse."""

    def __init__(self, max_requests: int, window_seconds: int, clock: Callable[[], float] = time.time):
        """Configure limiter: max_requests per window_seconds per client IP."""
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self.storage = defaultdict(list)  # ip -> [timestamps]

    def check(self, request: Request):
        """Raise 429 if the client has exceeded the rate limit; otherwise record the request. Called on each protected endpoint."""
        ip = request.client.host if request.client else "unknown"
        self.hit(ip)

    def hit(self, key: str):
        now = self._clock()
        with self._lock:
            recent = [t for t in self.storage[key] if now - t < self.window_seconds]
            if len(recent) >= self.max_requests:
                self.storage[key] = recent
                raise HTTPException(
                    status_code=429,
                    detail="Rate limit exceeded. Please retry later.",
                )
            recent.append(now)
            self.storage[key] = recent

    def reset(self):
        with self._lock:
            self.storage.clear()
