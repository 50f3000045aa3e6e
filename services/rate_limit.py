import time
from typing import Callable


class RequestBudget:
    """
    Fixed-window request budget for one connector.
    try_acquire() never waits: when the window is spent it returns False and the
    caller fails fast with RateLimited instead of queueing.
    """

    def __init__(self, max_requests: int, window_sec: float, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_sec = window_sec
        self._clock = clock
        self._count = 0
        self._reset_at = clock() + window_sec

    def try_acquire(self) -> bool:
        now = self._clock()
        if now >= self._reset_at:
            self._count = 0
            self._reset_at = now + self.window_sec

        if self._count >= self.max_requests:
            return False
        self._count += 1
        return True

    @property
    def remaining(self) -> int:
        if self._clock() >= self._reset_at:
            return self.max_requests
        return max(self.max_requests - self._count, 0)

    @property
    def reset_in(self) -> float:
        return max(self._reset_at - self._clock(), 0.0)
