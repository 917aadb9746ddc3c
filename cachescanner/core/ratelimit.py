"""Token-bucket throttle shared by every dispatcher worker."""

import threading
import time
from typing import Callable, Optional


class TokenBucket:
    """
    Bounds the outbound request rate to ``rate`` req/s with bursts of up to
    ``burst`` requests.

    Each caller reserves its slot under the lock (the balance may go negative,
    meaning "owed") and then sleeps outside it, so tokens are handed out in the
    order acquire() was entered and a slow sleeper never blocks the queue.
    A ``rate`` of None disables throttling entirely.
    """

    def __init__(self, rate: Optional[float] = None, burst: Optional[int] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        if rate is not None and rate <= 0:
            raise ValueError("rate must be positive or None")
        self.rate = rate
        self.burst = max(1, int(burst if burst is not None else (rate or 1)))
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._tokens = float(self.burst)
        self._last = clock()

    @property
    def enabled(self) -> bool:
        return self.rate is not None

    def acquire(self) -> float:
        """Block until a token is available; returns the time spent waiting."""
        if self.rate is None:
            return 0.0
        with self._lock:
            now = self._clock()
            self._tokens = min(float(self.burst),
                               self._tokens + (now - self._last) * self.rate)
            self._last = now
            self._tokens -= 1.0
            wait = 0.0 if self._tokens >= 0 else -self._tokens / self.rate
        if wait > 0:
            self._sleep(wait)
        return wait
