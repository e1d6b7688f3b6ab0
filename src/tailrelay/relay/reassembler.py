"""Reassemble stream chunks into complete log lines."""

import codecs
import threading
import time
from collections.abc import Callable
from datetime import datetime, timezone

import structlog

from .models import LogEvent

log = structlog.get_logger()


class LineReassembler:
    """Buffers chunks from the tail stream and emits complete lines.

    A trailing fragment without a newline is held back until more data arrives
    or until the idle deadline passes, at which point it is emitted as a line
    of its own. The deadline is recomputed on every chunk and checked by a
    single ticker thread owned by this object.
    """

    def __init__(
        self,
        on_line: Callable[[LogEvent], None],
        idle_timeout: float = 2.0,
        tick_interval: float = 0.25,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the reassembler.

        Args:
            on_line: Called with each complete line, in arrival order
            idle_timeout: Seconds without data before a held fragment is flushed
            tick_interval: How often the ticker checks the deadline
            clock: Monotonic clock, replaceable in tests
        """
        self.on_line = on_line
        self.idle_timeout = idle_timeout
        self.tick_interval = tick_interval
        self._clock = clock

        self._buffer = ""
        self._deadline: float | None = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._closed = False

        # Held while emitting so ticker flushes cannot interleave with feed()
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._ticker: threading.Thread | None = None

    @property
    def pending(self) -> str:
        """The fragment currently held back."""
        with self._lock:
            return self._buffer

    def feed(self, chunk: str | bytes) -> None:
        """Add a chunk and emit every line it completes."""
        with self._lock:
            if self._closed:
                return
            text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
            if not text:
                return

            self._buffer += text
            self._deadline = self._clock() + self.idle_timeout

            *lines, self._buffer = self._buffer.split("\n")
            for line in lines:
                self._emit(line)

    def check_idle(self) -> bool:
        """Flush the held fragment if the idle deadline has passed.

        Returns:
            True if a fragment was flushed
        """
        with self._lock:
            if self._deadline is None or self._clock() < self._deadline:
                return False
            return self._flush_locked()

    def flush(self) -> bool:
        """Emit the held fragment now, if any."""
        with self._lock:
            return self._flush_locked()

    def start(self) -> None:
        """Start the idle ticker thread."""
        if self._ticker is not None and self._ticker.is_alive():
            return
        self._stop_event.clear()
        self._ticker = threading.Thread(target=self._tick_loop, daemon=True)
        self._ticker.start()

    def stop(self) -> None:
        """Stop the ticker, flush the fragment once and refuse further input."""
        self._stop_event.set()
        if self._ticker is not None:
            self._ticker.join(timeout=self.tick_interval * 4 + 1)
            self._ticker = None
        with self._lock:
            self._flush_locked()
            self._closed = True

    def reset(self) -> None:
        """Re-open a stopped reassembler with an empty buffer."""
        with self._lock:
            self._buffer = ""
            self._deadline = None
            self._decoder.reset()
            self._closed = False

    def _tick_loop(self) -> None:
        while not self._stop_event.wait(self.tick_interval):
            self.check_idle()

    def _flush_locked(self) -> bool:
        self._buffer += self._decoder.decode(b"", final=True)
        fragment, self._buffer = self._buffer, ""
        self._deadline = None
        if not fragment.strip():
            return False
        log.debug("Flushing partial line", length=len(fragment))
        self._emit(fragment)
        return True

    def _emit(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        try:
            self.on_line(LogEvent(raw_line=line, received_at=datetime.now(timezone.utc)))
        except Exception:
            log.exception("Line handler failed", line=line[:100])
