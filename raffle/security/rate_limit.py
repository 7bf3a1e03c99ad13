"""Fixed window rate limiting for mutating state requests."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict

logger = logging.getLogger(__name__)


class RateLimitExceededError(RuntimeError):
    """Raised when a client exhausts its request allowance for the window."""

    def __init__(self, key: str, retry_after: float) -> None:
        super().__init__(f"Rate limit exceeded for {key}")
        self.key = key
        self.retry_after = retry_after


@dataclass
class _Window:
    started_at: float
    count: int = 0


class FixedWindowRateLimiter:
    """Allow at most ``max_requests`` per ``window_seconds`` for each key.

    Windows start at a key's first request; expired windows are dropped
    lazily whenever the limiter is consulted.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = Lock()

    def _prune(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if now - window.started_at >= self.window_seconds]
        for key in expired:
            del self._windows[key]

    def hit(self, key: str) -> None:
        """Record a request for ``key`` or raise :class:`RateLimitExceededError`."""

        now = self._clock()
        with self._lock:
            self._prune(now)
            window = self._windows.setdefault(key, _Window(started_at=now))
            if window.count >= self.max_requests:
                retry_after = self.window_seconds - (now - window.started_at)
                logger.warning("Rate limit hit for %s (%d requests)", key, window.count)
                raise RateLimitExceededError(key, retry_after)
            window.count += 1

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
