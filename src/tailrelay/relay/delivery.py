"""Delivery loop: turn queued logs into batches and hand them to the sink."""

import threading
import time
from dataclasses import dataclass
from typing import Protocol

import structlog

from tailrelay.metrics import DELIVERY_ERRORS, LOGS_REQUEUED, MESSAGES_SENT, QUEUE_PENDING

from .batcher import Batcher
from .errors import SinkPermanentError, SinkTransientError
from .models import Batch, ParsedLog, SubBatch
from .queue import PendingQueue

log = structlog.get_logger()


class LogSink(Protocol):
    """Where batches go."""

    def deliver(self, sub_batch: SubBatch) -> str | None:
        """Send one sub-batch, returning a message handle.

        Raises SinkTransientError (retry later) or SinkPermanentError (drop).
        """
        ...


@dataclass
class DeliveryStats:
    batches: int = 0
    messages_sent: int = 0
    transient_failures: int = 0
    permanent_failures: int = 0
    dropped_logs: int = 0
    requeued_logs: int = 0


class DeliveryWorker:
    """Consumes the pending queue on its own thread.

    Each cycle builds one batch, delivers its sub-batches in order, then
    pauses for inter_batch_delay. That pause is what keeps us under the
    sink's rate limit.
    """

    def __init__(
        self,
        queue: PendingQueue,
        batcher: Batcher,
        sink: LogSink,
        inter_batch_delay: float = 1.0,
        group_delay: float = 0.2,
        retry_delay: float = 5.0,
        drain_delay: float = 0.1,
    ):
        """Initialize the worker.

        Args:
            queue: Pending queue to consume
            batcher: Builds batches from the queue
            sink: Delivery target
            inter_batch_delay: Seconds to pause after each batch
            group_delay: Seconds between sub-batches of one batch
            retry_delay: Seconds before a transiently failed sub-batch is requeued
            drain_delay: Shortened inter-batch pause used while draining on shutdown
        """
        self.queue = queue
        self.batcher = batcher
        self.sink = sink
        self.inter_batch_delay = inter_batch_delay
        self.group_delay = group_delay
        self.retry_delay = retry_delay
        self.drain_delay = drain_delay

        self._stats = DeliveryStats()
        self._stats_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        # Pending retries: token -> (timer, items)
        self._retries: dict[object, tuple[threading.Timer, list[ParsedLog]]] = {}
        self._retry_lock = threading.Lock()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()
        log.info("Delivery worker started")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            if not self.queue.wait_for_items(timeout=0.5):
                continue
            if self._stop_event.is_set():
                break
            try:
                self.run_cycle()
            except Exception:
                log.exception("Unexpected error in delivery cycle")
            self._stop_event.wait(self.inter_batch_delay)

    def run_cycle(
        self, group_delay: float | None = None, retry_delay: float | None = None
    ) -> Batch | None:
        """Build and deliver one batch.

        Returns:
            The batch that was attempted, or None if the queue was empty
        """
        batch = self.batcher.next_batch()
        if batch is None:
            return None

        group_delay = self.group_delay if group_delay is None else group_delay
        retry_delay = self.retry_delay if retry_delay is None else retry_delay
        self._count("batches")

        for index, sub_batch in enumerate(batch.sub_batches):
            if index and group_delay > 0:
                time.sleep(group_delay)
            try:
                self.sink.deliver(sub_batch)
            except SinkPermanentError as e:
                log.warning(
                    "Sink rejected batch, dropping it",
                    reason=e.reason,
                    error=str(e),
                    lines=sub_batch.count,
                )
                DELIVERY_ERRORS.labels(reason=e.reason).inc()
                self._count("permanent_failures")
                self._count("dropped_logs", sub_batch.count)
                continue
            except SinkTransientError as e:
                self._retry_remaining(batch, index, e.reason, str(e), retry_delay)
                break
            except Exception as e:
                # Anything the sink did not classify is retried like "other"
                log.exception("Unexpected sink error")
                self._retry_remaining(batch, index, "other", str(e), retry_delay)
                break

            MESSAGES_SENT.labels(severity=sub_batch.severity.value).inc()
            self._count("messages_sent")

        QUEUE_PENDING.set(len(self.queue))
        return batch

    def _retry_remaining(
        self, batch: Batch, index: int, reason: str, error: str, retry_delay: float
    ) -> None:
        # This and every sub-batch not yet sent go back to the queue
        remaining = [item for sb in batch.sub_batches[index:] for item in sb.items]
        log.warning(
            "Delivery failed, will retry",
            reason=reason,
            error=error,
            lines=len(remaining),
            retry_in=retry_delay,
        )
        DELIVERY_ERRORS.labels(reason=reason).inc()
        self._count("transient_failures")
        self._schedule_retry(remaining, retry_delay)

    def _schedule_retry(self, items: list[ParsedLog], delay: float) -> None:
        self._count("requeued_logs", len(items))
        LOGS_REQUEUED.inc(len(items))
        if delay <= 0:
            self.queue.put_many(items)
            return

        token = object()
        timer = threading.Timer(delay, self._release_retry, args=(token,))
        timer.daemon = True
        with self._retry_lock:
            self._retries[token] = (timer, items)
        timer.start()

    def _release_retry(self, token: object) -> None:
        with self._retry_lock:
            entry = self._retries.pop(token, None)
        if entry is not None:
            self.queue.put_many(entry[1])

    def release_retries(self) -> int:
        """Requeue every pending retry immediately. Returns the number of lines."""
        with self._retry_lock:
            entries = list(self._retries.values())
            self._retries.clear()
        released = 0
        for timer, items in entries:
            timer.cancel()
            self.queue.put_many(items)
            released += len(items)
        return released

    @property
    def pending_retries(self) -> int:
        with self._retry_lock:
            return sum(len(items) for _, items in self._retries.values())

    def stop(self, timeout: float = 15.0) -> None:
        """Stop the worker thread after its current cycle."""
        self._stop_event.set()
        self.queue.wake()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                log.warning("Delivery worker did not stop in time")
            self._thread = None

    def drain(self, timeout: float = 10.0) -> int:
        """Stop the worker and deliver what is left, with a short pause between
        batches, until the queue is empty or timeout expires.

        Returns:
            Number of lines still queued when draining ended
        """
        deadline = time.monotonic() + timeout
        self.stop(timeout=timeout)
        self.release_retries()

        log.info("Draining log queue", pending=len(self.queue))
        while len(self.queue) and time.monotonic() < deadline:
            self.run_cycle(group_delay=0.0, retry_delay=0.0)
            time.sleep(self.drain_delay)

        remaining = len(self.queue)
        if remaining:
            log.warning("Shutdown deadline reached, dropping queued logs", remaining=remaining)
        else:
            log.info("Log queue drained")
        return remaining

    def _count(self, name: str, amount: int = 1) -> None:
        with self._stats_lock:
            setattr(self._stats, name, getattr(self._stats, name) + amount)

    def stats(self) -> DeliveryStats:
        with self._stats_lock:
            return DeliveryStats(**vars(self._stats))
