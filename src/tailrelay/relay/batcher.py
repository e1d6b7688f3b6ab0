"""Group queued logs into size- and type-bounded batches."""

from collections import Counter
from dataclasses import replace

from .classifier import MIXED_TITLE, TYPE_TITLES, detect_severity
from .models import Batch, ParsedLog, SourceType, SubBatch
from .queue import PendingQueue

DEFAULT_MAX_LENGTH = 1900
DEFAULT_MAX_PER_TYPE = 20

# A batch with at least this many items and more than one source type is
# split into one message per type
SPLIT_THRESHOLD = 5

OVERSIZE_SUFFIX = "\n... [LOG TRUNCATED - {omitted} characters omitted]"


def truncate_oversized(text: str, max_length: int) -> str:
    """Shorten a single line so that, with its suffix, it fits max_length."""
    if len(text) <= max_length:
        return text
    suffix_length = len(OVERSIZE_SUFFIX.format(omitted=len(text)))
    keep = max(max_length - suffix_length, 0)
    return text[:keep] + OVERSIZE_SUFFIX.format(omitted=len(text) - keep)


class Batcher:
    """Pulls from the PendingQueue and builds one Batch per delivery cycle.

    Items are taken from the head while the joined length (newline separated)
    stays within max_length and the item's source type has contributed fewer
    than max_per_type items. The first item that does not fit stays queued.
    """

    def __init__(
        self,
        queue: PendingQueue,
        max_length: int = DEFAULT_MAX_LENGTH,
        max_per_type: int = DEFAULT_MAX_PER_TYPE,
    ):
        self.queue = queue
        self.max_length = max_length
        self.max_per_type = max_per_type

    def next_batch(self) -> Batch | None:
        """Build the next batch, or None if the queue is empty."""
        items = self._pull()
        if not items:
            return None
        return Batch(items=items, sub_batches=self.split(items))

    def _pull(self) -> list[ParsedLog]:
        total = 0
        counts: Counter[SourceType] = Counter()
        oversized = False

        def accept(item: ParsedLog) -> bool:
            nonlocal total, oversized
            if oversized:
                return False

            length = len(item.rendered_text)
            if not counts and length > self.max_length:
                # Goes out alone, truncated
                oversized = True
                counts[item.source_type] += 1
                return True

            if counts[item.source_type] >= self.max_per_type:
                return False
            added = length + (1 if counts else 0)
            if total + added > self.max_length:
                return False

            total += added
            counts[item.source_type] += 1
            return True

        items = self.queue.take_while(accept)
        if oversized:
            item = items[0]
            items = [
                replace(item, rendered_text=truncate_oversized(item.rendered_text, self.max_length))
            ]
        return items

    def split(self, items: list[ParsedLog]) -> list[SubBatch]:
        """Group a batch into the messages that will actually be sent."""
        groups: dict[SourceType, list[ParsedLog]] = {}
        for item in items:
            groups.setdefault(item.source_type, []).append(item)

        if len(groups) > 1 and len(items) >= SPLIT_THRESHOLD:
            return [
                SubBatch(
                    items=group,
                    severity=detect_severity([i.rendered_text for i in group]),
                    title=TYPE_TITLES[source_type],
                    source_type=source_type,
                )
                for source_type, group in groups.items()
            ]

        if len(groups) == 1:
            source_type = items[0].source_type
            title = TYPE_TITLES[source_type]
        else:
            source_type = None
            title = MIXED_TITLE

        return [
            SubBatch(
                items=list(items),
                severity=detect_severity([i.rendered_text for i in items]),
                title=title,
                source_type=source_type,
            )
        ]
