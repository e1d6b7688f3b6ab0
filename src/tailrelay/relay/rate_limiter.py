"""Sliding-window rate limiter for outbound messages."""

import threading
import time
from collections import deque
from collections.abc import Callable


class RateLimiter:
    """Allow at most max_messages sends within any window of window_seconds.

    Tracks the send time of each recent message and forgets the ones that
    have slid out of the window.
    """

    def __init__(
        self,
        max_messages: int = 30,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_messages = max_messages
        self.window_seconds = window_seconds
        self._clock = clock
        self._sent: deque[float] = deque()
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        while self._sent and now - self._sent[0] >= self.window_seconds:
            self._sent.popleft()

    def is_limited(self) -> bool:
        """True if another message now would exceed the limit."""
        with self._lock:
            self._prune(self._clock())
            return len(self._sent) >= self.max_messages

    def record(self) -> None:
        """Record that a message was sent."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            self._sent.append(now)

    def in_window(self) -> int:
        """Number of messages sent within the current window."""
        with self._lock:
            self._prune(self._clock())
            return len(self._sent)

    def time_until_available(self) -> float:
        """Seconds until a slot frees up (0.0 if one is free now)."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._sent) < self.max_messages:
                return 0.0
            return self._sent[0] + self.window_seconds - now
