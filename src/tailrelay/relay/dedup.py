"""Bounded recency cache for duplicate suppression."""

import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime

from .formatter import TIMESTAMP_RE
from .models import LogEvent

DedupKey = tuple[str, str]

KEY_PREFIX_LENGTH = 50


def dedup_key(raw_line: str, received_at: datetime) -> DedupKey:
    """Key a line by its embedded timestamp (or arrival time) and its first 50 chars."""
    match = TIMESTAMP_RE.search(raw_line)
    stamp = match.group(1) if match else received_at.isoformat()
    return (stamp, raw_line[:KEY_PREFIX_LENGTH])


def event_key(event: LogEvent) -> DedupKey:
    return dedup_key(event.raw_line, event.received_at)


@dataclass
class DedupStats:
    size: int
    capacity: int
    duplicates: int


class DedupCache:
    """Set of recently seen keys with strict FIFO eviction.

    Lookups do not refresh a key: the oldest inserted key is evicted first
    once the cache grows past its capacity.
    """

    def __init__(self, capacity: int = 1000):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._keys: OrderedDict[DedupKey, None] = OrderedDict()
        self._duplicates = 0
        self._lock = threading.Lock()

    def seen(self, key: DedupKey) -> bool:
        """Look up a key, inserting it if new.

        Returns:
            True if the key was already present (a duplicate)
        """
        with self._lock:
            if key in self._keys:
                self._duplicates += 1
                return True

            self._keys[key] = None
            if len(self._keys) > self.capacity:
                self._keys.popitem(last=False)
            return False

    def __contains__(self, key: DedupKey) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def stats(self) -> DedupStats:
        with self._lock:
            return DedupStats(
                size=len(self._keys), capacity=self.capacity, duplicates=self._duplicates
            )
