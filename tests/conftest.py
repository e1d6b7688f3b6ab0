"""Shared fakes and helpers for relay tests."""

import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime, timezone

import pytest

from tailrelay.relay import ParsedLog, SourceType, StreamInterrupted, SubBatch


@pytest.fixture(autouse=True)
def restore_root_logger():
    """configure_logging replaces root handlers; put the originals back."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll predicate until it is true or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def make_log(source_type: SourceType = SourceType.APP, text: str = "line") -> ParsedLog:
    return ParsedLog(
        timestamp=None,
        source_type=source_type,
        source_detail="",
        rendered_text=text,
        was_formatted=True,
        raw_line=text,
    )


def heroku_line(source: str, message: str, when: datetime | None = None) -> str:
    when = when or datetime.now(timezone.utc)
    return f"{when.isoformat(timespec='microseconds')} {source}: {message}"


class FakeStream:
    """Yields the given chunks, then optionally blocks until closed, then
    optionally raises."""

    def __init__(self, chunks=(), error: Exception | None = None, hold: bool = False):
        self._chunks = list(chunks)
        self.error = error
        self.hold = hold
        self.closed = threading.Event()

    def chunks(self):
        for chunk in self._chunks:
            yield chunk
        if self.hold:
            self.closed.wait(5)
        if self.error is not None:
            raise self.error

    def close(self) -> None:
        self.closed.set()


class FakeSource:
    """Hands out prepared streams (or raises prepared errors) in order.

    Once the list runs out every open fails with StreamInterrupted.
    """

    def __init__(self, streams=(), verify_error: Exception | None = None):
        self.streams = list(streams)
        self.verify_error = verify_error
        self.opened = 0
        self.verified = 0

    def verify_reachable(self, app: str) -> dict:
        self.verified += 1
        if self.verify_error is not None:
            raise self.verify_error
        return {"name": app}

    def open_stream(self, app: str):
        self.opened += 1
        item = self.streams.pop(0) if self.streams else StreamInterrupted("no more streams")
        if isinstance(item, Exception):
            raise item
        return item


class FakeSink:
    """Records delivered sub-batches; raises queued failures first."""

    def __init__(self, failures=()):
        self.failures = list(failures)
        self.delivered: list[SubBatch] = []
        self.attempts = 0
        self._lock = threading.Lock()

    def deliver(self, sub_batch: SubBatch) -> str | None:
        with self._lock:
            self.attempts += 1
            if self.failures:
                raise self.failures.pop(0)
            self.delivered.append(sub_batch)
            return str(len(self.delivered))

    @property
    def delivered_lines(self) -> list[str]:
        with self._lock:
            return [item.rendered_text for sb in self.delivered for item in sb.items]
