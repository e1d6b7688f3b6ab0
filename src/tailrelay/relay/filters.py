"""Ingestion filter: drop noise and lines replayed from before startup."""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from .formatter import extract_timestamp

# Lines that never carry useful information. Searched anywhere in the line
# unless anchored.
DEFAULT_NOISE_PATTERNS: list[re.Pattern] = [
    re.compile(r"^\s*$"),
    re.compile(r'heroku\[router\]: at=\w+ method=GET path="/favicon\.ico'),
    re.compile(r'heroku\[router\]: at=info method=GET path="/(?:health|healthz|ping)(?:[?"])'),
    re.compile(r"^Connecting to logs"),
    re.compile(r"^heroku CLI", re.IGNORECASE),
    re.compile(r"^Warning:"),
]


class FilterResult(Enum):
    """Outcome of running a line through the ingestion filter."""

    ACCEPT = "accept"
    NOISE = "noise"
    STALE = "stale"


@dataclass
class FilterStats:
    accepted: int = 0
    noise_dropped: int = 0
    old_logs_filtered: int = 0


class IngestionFilter:
    """Noise and age filtering for raw lines.

    A line is kept only if it matches no noise pattern and is not older than
    process start minus the tolerance. Lines without a timestamp are kept.
    """

    def __init__(
        self,
        process_start: datetime | None = None,
        tolerance_ms: int = 1000,
        noise_patterns: list[re.Pattern] | None = None,
    ):
        self.process_start = process_start or datetime.now(timezone.utc)
        self.tolerance = timedelta(milliseconds=tolerance_ms)
        self.noise_patterns = (
            DEFAULT_NOISE_PATTERNS if noise_patterns is None else noise_patterns
        )
        self._stats = FilterStats()

    @property
    def cutoff(self) -> datetime:
        """Lines timestamped strictly before this are dropped."""
        return self.process_start - self.tolerance

    def is_noise(self, line: str) -> bool:
        return any(pattern.search(line) for pattern in self.noise_patterns)

    def is_too_old(self, line: str) -> bool:
        timestamp = extract_timestamp(line)
        if timestamp is None:
            return False
        return timestamp < self.cutoff

    def check(self, line: str) -> FilterResult:
        """Classify a line and update counters."""
        if self.is_noise(line):
            self._stats.noise_dropped += 1
            return FilterResult.NOISE
        if self.is_too_old(line):
            self._stats.old_logs_filtered += 1
            return FilterResult.STALE
        self._stats.accepted += 1
        return FilterResult.ACCEPT

    def stats(self) -> FilterStats:
        return FilterStats(**vars(self._stats))
