"""Fixed-window per-product rate limiter.

Each product gets a counter that resets once its window expires:

    window starts on the first event after the previous window ended
    events 1..limit in a window are allowed
    event limit+1 and later in the same window are rejected

State is process-local. Multiple engine instances each enforce their own cap.
Expired windows are evicted by allow() at most once per window length, so
the map only holds products seen within roughly the last two windows.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """Counts events per product in fixed windows and enforces a cap.

    The check-and-increment in allow() happens under a single lock, so two
    concurrent events for the same product can never both take the last
    slot.

    Attributes:
        limit: Max events accepted per product per window.
        window_seconds: Window length.
    """

    def __init__(
        self,
        limit: int = 100,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialise the limiter.

        Args:
            limit: Per-window cap. Must be positive.
            window_seconds: Window length in seconds. Must be positive.
            clock: Returns the current time in seconds. Injected by tests.
        """
        if limit <= 0 or window_seconds <= 0:
            raise ValueError("limit and window_seconds must be positive.")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._next_sweep_at = clock() + window_seconds
        self._lock = threading.Lock()

    def allow(self, product: str) -> bool:
        """Record one event for product and report whether it is within the cap.

        Rejected events do not consume a slot.
        """
        with self._lock:
            now = self._clock()
            if now >= self._next_sweep_at:
                self._evict_expired(now)
            window = self._windows.get(product)
            if window is None or now >= window.reset_at:
                self._windows[product] = _Window(count=1, reset_at=now + self.window_seconds)
                return True
            if window.count >= self.limit:
                return False
            window.count += 1
            return True

    def remaining(self, product: str) -> int:
        """Return how many more events product may send in its current window."""
        with self._lock:
            window = self._windows.get(product)
            if window is None or self._clock() >= window.reset_at:
                return self.limit
            return max(self.limit - window.count, 0)

    def prune(self) -> int:
        """Drop expired windows so idle products do not accumulate. Returns count dropped."""
        with self._lock:
            return self._evict_expired(self._clock())

    def _evict_expired(self, now: float) -> int:
        expired = [p for p, w in self._windows.items() if now >= w.reset_at]
        for product in expired:
            del self._windows[product]
        self._next_sweep_at = now + self.window_seconds
        return len(expired)
