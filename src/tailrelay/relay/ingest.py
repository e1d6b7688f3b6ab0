"""Filter, format and deduplicate lines on their way into the pending queue."""

from dataclasses import dataclass

import structlog

from tailrelay.metrics import LOGS_DROPPED, LOGS_QUEUED, LOGS_RECEIVED

from .dedup import DedupCache, event_key
from .filters import FilterResult, IngestionFilter
from .formatter import DEFAULT_MAX_LENGTH, format_event
from .models import LogEvent
from .queue import PendingQueue

log = structlog.get_logger()


@dataclass
class IngestStats:
    received: int = 0
    accepted: int = 0
    noise_dropped: int = 0
    old_logs_filtered: int = 0
    duplicates: int = 0
    queued: int = 0


class IngestPipeline:
    """Runs each complete line through filter, formatter and dedup cache,
    then appends survivors to the pending queue."""

    def __init__(
        self,
        ingestion_filter: IngestionFilter,
        dedup: DedupCache,
        queue: PendingQueue,
        max_length: int = DEFAULT_MAX_LENGTH,
    ):
        self.filter = ingestion_filter
        self.dedup = dedup
        self.queue = queue
        self.max_length = max_length
        self._stats = IngestStats()

    def ingest(self, event: LogEvent) -> bool:
        """Process one line.

        Returns:
            True if the line passed the ingestion filter (whether or not it
            turned out to be a duplicate)
        """
        self._stats.received += 1
        LOGS_RECEIVED.inc()

        result = self.filter.check(event.raw_line)
        if result is FilterResult.NOISE:
            self._stats.noise_dropped += 1
            LOGS_DROPPED.labels(reason="noise").inc()
            return False
        if result is FilterResult.STALE:
            self._stats.old_logs_filtered += 1
            LOGS_DROPPED.labels(reason="stale").inc()
            log.debug("Ignoring log older than startup", line=event.raw_line[:100])
            return False

        self._stats.accepted += 1
        parsed = format_event(event, self.max_length)

        if self.dedup.seen(event_key(event)):
            self._stats.duplicates += 1
            LOGS_DROPPED.labels(reason="duplicate").inc()
            return True

        self.queue.put(parsed)
        self._stats.queued += 1
        LOGS_QUEUED.inc()
        return True

    def stats(self) -> IngestStats:
        return IngestStats(**vars(self._stats))
