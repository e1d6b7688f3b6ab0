"""Data types flowing through the relay pipeline."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class SourceType(Enum):
    """Where a Heroku log line came from."""

    ROUTER = "router"
    APP = "app"
    DYNO = "dyno"
    API = "api"
    UNKNOWN = "unknown"


class Severity(Enum):
    """Severity tag attached to each delivered sub-batch."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class LogEvent:
    """A complete raw line as read from the tail stream."""

    raw_line: str
    received_at: datetime


@dataclass(frozen=True)
class ParsedLog:
    """A log line after formatting.

    timestamp is None when the line did not have the expected shape, in which
    case rendered_text is the raw line.
    """

    timestamp: datetime | None
    source_type: SourceType
    source_detail: str
    rendered_text: str
    was_formatted: bool
    raw_line: str = ""
    received_at: datetime | None = None


@dataclass
class SubBatch:
    """One outbound message: a group of lines rendered and sent together."""

    items: list[ParsedLog]
    severity: Severity
    title: str
    source_type: SourceType | None = None  # None for a mixed, ungrouped message

    @property
    def count(self) -> int:
        return len(self.items)

    @property
    def content(self) -> str:
        return "\n".join(item.rendered_text for item in self.items)


@dataclass
class Batch:
    """Everything pulled from the queue in one delivery cycle."""

    items: list[ParsedLog]
    sub_batches: list[SubBatch] = field(default_factory=list)

    @property
    def rendered_length(self) -> int:
        """Length of all lines joined with newline separators."""
        if not self.items:
            return 0
        return sum(len(item.rendered_text) for item in self.items) + len(self.items) - 1
