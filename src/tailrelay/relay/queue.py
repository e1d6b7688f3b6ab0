"""Thread-safe FIFO of formatted logs awaiting delivery."""

import threading
from collections import deque
from collections.abc import Callable, Iterable

from .models import ParsedLog


class PendingQueue:
    """Unbounded FIFO shared by the ingest path (producer) and the delivery
    worker (consumer).

    Items leave in the order they were added. Nothing here blocks while
    holding the lock except Condition.wait, which releases it.
    """

    def __init__(self):
        self._items: deque[ParsedLog] = deque()
        self._cond = threading.Condition()

    def put(self, item: ParsedLog) -> None:
        with self._cond:
            self._items.append(item)
            self._cond.notify_all()

    def put_many(self, items: Iterable[ParsedLog]) -> None:
        """Append items at the tail, keeping their relative order."""
        with self._cond:
            self._items.extend(items)
            self._cond.notify_all()

    def take_while(self, accept: Callable[[ParsedLog], bool]) -> list[ParsedLog]:
        """Pop items from the head for as long as accept(head) is True.

        accept must be cheap and must not block; it runs under the queue lock.
        The first rejected item stays at the head.
        """
        taken: list[ParsedLog] = []
        with self._cond:
            while self._items and accept(self._items[0]):
                taken.append(self._items.popleft())
        return taken

    def wait_for_items(self, timeout: float | None = None) -> bool:
        """Block until the queue is non-empty or timeout expires."""
        with self._cond:
            return self._cond.wait_for(lambda: bool(self._items), timeout=timeout)

    def wake(self) -> None:
        """Wake any waiting consumer (used on shutdown)."""
        with self._cond:
            self._cond.notify_all()

    def snapshot(self) -> list[ParsedLog]:
        with self._cond:
            return list(self._items)

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)
