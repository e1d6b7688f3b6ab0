"""Tail stream lifecycle: connect, stream, reconnect with backoff, stop."""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

import structlog

from tailrelay.metrics import RECONNECTIONS, STREAM_UP

from .errors import ReconnectExhausted, SourceAuthFailed, SourceError, StreamInterrupted
from .models import LogEvent
from .reassembler import LineReassembler
from .source import LogSource, LogStream

log = structlog.get_logger()


class SupervisorState(Enum):
    STOPPED = "stopped"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"


@dataclass
class ReconnectState:
    """Backoff bookkeeping for reconnection attempts.

    delay_ms grows by multiplier after each failed attempt, up to
    max_delay_ms. Both counters go back to their start values as soon as a
    log line comes through.
    """

    max_attempts: int = 5
    initial_delay_ms: int = 5000
    max_delay_ms: int = 30000
    multiplier: float = 1.5
    attempts: int = 0
    delay_ms: int = field(init=False)

    def __post_init__(self) -> None:
        self.delay_ms = self.initial_delay_ms

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def record_attempt(self) -> None:
        self.attempts += 1

    def backoff(self) -> None:
        self.delay_ms = min(int(self.delay_ms * self.multiplier), self.max_delay_ms)

    def reset(self) -> None:
        self.attempts = 0
        self.delay_ms = self.initial_delay_ms


@dataclass
class SupervisorStats:
    state: str
    logs_received: int
    reconnections: int
    reconnect_attempts: int
    reconnect_delay_ms: int
    last_log_time: datetime | None
    started_at: datetime
    uptime_seconds: float
    logs_per_minute: float


class StreamSupervisor:
    """Owns the tail stream and keeps it attached.

    The reading happens on a dedicated thread. Every chunk goes to the line
    reassembler, which hands complete lines to on_event. on_event returns
    True when a line was accepted, which resets the reconnect backoff.

    Stream failures never escape this class. When the supervisor gives up
    (reconnects exhausted or credentials rejected) it records the reason in
    fatal_error and moves to STOPPED.
    """

    def __init__(
        self,
        source: LogSource,
        app: str,
        on_event: Callable[[LogEvent], bool],
        reconnect: ReconnectState | None = None,
        idle_timeout: float = 2.0,
        tick_interval: float = 0.25,
    ):
        self.source = source
        self.app = app
        self.on_event = on_event
        self.reassembler = LineReassembler(
            self._handle_event, idle_timeout=idle_timeout, tick_interval=tick_interval
        )
        self.fatal_error: Exception | None = None

        self._reconnect = reconnect or ReconnectState()
        self._state = SupervisorState.STOPPED
        self._stream: LogStream | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._stopped = threading.Event()
        self._stopped.set()

        self._logs_received = 0
        self._reconnections = 0
        self._last_log_time: datetime | None = None
        self._started_at = datetime.now(timezone.utc)
        self._started_monotonic = time.monotonic()

    @property
    def state(self) -> SupervisorState:
        with self._lock:
            return self._state

    def _set_state(self, state: SupervisorState) -> None:
        with self._lock:
            previous, self._state = self._state, state
        if previous != state:
            log.debug("Stream state changed", previous=previous.value, state=state.value)

    def start(self) -> None:
        """Verify the source, attach the stream and start reading.

        Raises:
            SourceUnreachable, SourceAuthFailed, StreamInterrupted: startup
            failures are fatal and not retried
        """
        log.info("Starting log stream", app=self.app)
        self._stop_event.clear()
        self.fatal_error = None
        self._set_state(SupervisorState.CONNECTING)

        try:
            self.source.verify_reachable(self.app)
            stream = self.source.open_stream(self.app)
        except SourceError as e:
            log.error("Cannot start log stream", app=self.app, error=str(e))
            self._set_state(SupervisorState.STOPPED)
            raise

        with self._lock:
            self._stream = stream
        self._set_state(SupervisorState.STREAMING)

        self.reassembler.reset()
        self.reassembler.start()
        self._stopped.clear()
        self._thread = threading.Thread(target=self._run, args=(stream,), daemon=True)
        self._thread.start()
        log.info("Log stream started", app=self.app)

    def _handle_event(self, event: LogEvent) -> None:
        if not self.on_event(event):
            return
        with self._lock:
            self._reconnect.reset()
            self._logs_received += 1
            self._last_log_time = event.received_at

    def _run(self, stream: LogStream | None) -> None:
        try:
            while stream is not None:
                self._consume(stream)
                if self._stop_event.is_set() or self.fatal_error is not None:
                    break
                with self._lock:
                    # The previous reconnect ended without a single line
                    if self._reconnect.attempts > 0:
                        self._reconnect.backoff()
                stream = self._reconnect_stream()
        finally:
            self._finish()

    def _consume(self, stream: LogStream) -> None:
        STREAM_UP.set(1)
        try:
            for chunk in stream.chunks():
                if self._stop_event.is_set():
                    break
                self.reassembler.feed(chunk)
        except SourceAuthFailed as e:
            log.error("Heroku rejected credentials, not reconnecting", error=str(e))
            self.fatal_error = e
        except StreamInterrupted as e:
            log.warning("Log stream interrupted", error=str(e))
        except Exception:
            log.exception("Unexpected error reading log stream")
        finally:
            STREAM_UP.set(0)
            stream.close()
            # A fragment from this stream must not prefix the next one
            self.reassembler.flush()
            with self._lock:
                if self._stream is stream:
                    self._stream = None

        if not self._stop_event.is_set():
            log.info("Log stream ended", app=self.app)

    def _reconnect_stream(self) -> LogStream | None:
        while not self._stop_event.is_set():
            with self._lock:
                exhausted = self._reconnect.exhausted
                if not exhausted:
                    self._reconnect.record_attempt()
                attempt = self._reconnect.attempts
                delay_ms = self._reconnect.delay_ms
                max_attempts = self._reconnect.max_attempts

            if exhausted:
                log.error("Maximum reconnect attempts reached", attempts=attempt)
                self.fatal_error = ReconnectExhausted(attempt)
                return None

            self._reconnections += 1
            RECONNECTIONS.inc()
            self._set_state(SupervisorState.RECONNECTING)
            log.info(
                "Reconnecting to log stream",
                attempt=attempt,
                max_attempts=max_attempts,
                delay_ms=delay_ms,
            )
            if self._stop_event.wait(delay_ms / 1000):
                return None

            self._set_state(SupervisorState.CONNECTING)
            try:
                stream = self.source.open_stream(self.app)
            except SourceAuthFailed as e:
                log.error("Heroku rejected credentials, not reconnecting", error=str(e))
                self.fatal_error = e
                return None
            except StreamInterrupted as e:
                log.warning("Reconnect failed", attempt=attempt, error=str(e))
                with self._lock:
                    self._reconnect.backoff()
                continue

            with self._lock:
                if self._stop_event.is_set():
                    stream.close()
                    return None
                self._stream = stream
            self._set_state(SupervisorState.STREAMING)
            log.info("Reconnected to log stream", attempt=attempt)
            return stream

        return None

    def _finish(self) -> None:
        # Whatever partial line is still held goes through the pipeline once
        self.reassembler.stop()
        self._set_state(SupervisorState.STOPPED)
        self._stopped.set()
        if self.fatal_error is not None:
            log.error("Log stream stopped", reason=str(self.fatal_error))
        else:
            log.info("Log stream stopped")

    def stop(self, timeout: float = 10.0) -> None:
        """Stop reading, detach the stream and flush the held partial line."""
        self._stop_event.set()
        with self._lock:
            stream = self._stream
        if stream is not None:
            stream.close()

        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                log.warning("Stream reader did not stop in time")
        self.reassembler.stop()
        self._set_state(SupervisorState.STOPPED)
        self._stopped.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the supervisor reaches STOPPED. Returns False on timeout."""
        return self._stopped.wait(timeout)

    def reconnect_state(self) -> ReconnectState:
        """A copy of the current reconnect bookkeeping."""
        with self._lock:
            state = ReconnectState(
                max_attempts=self._reconnect.max_attempts,
                initial_delay_ms=self._reconnect.initial_delay_ms,
                max_delay_ms=self._reconnect.max_delay_ms,
                multiplier=self._reconnect.multiplier,
                attempts=self._reconnect.attempts,
            )
            state.delay_ms = self._reconnect.delay_ms
            return state

    def stats(self) -> SupervisorStats:
        uptime = time.monotonic() - self._started_monotonic
        with self._lock:
            received = self._logs_received
            per_minute = round(received / (uptime / 60), 2) if received and uptime > 0 else 0.0
            return SupervisorStats(
                state=self._state.value,
                logs_received=received,
                reconnections=self._reconnections,
                reconnect_attempts=self._reconnect.attempts,
                reconnect_delay_ms=self._reconnect.delay_ms,
                last_log_time=self._last_log_time,
                started_at=self._started_at,
                uptime_seconds=round(uptime, 1),
                logs_per_minute=per_minute,
            )
