"""Heroku log relay pipeline.

Tails a Heroku app's logs, reformats and deduplicates them, and posts
rate-limited batches to Discord.
"""

from .batcher import Batcher
from .classifier import SourceInfo, classify_source, detect_severity
from .daemon import RelayDaemon, run_relay
from .dedup import DedupCache, dedup_key
from .delivery import DeliveryWorker
from .discord import DiscordSink
from .errors import (
    ReconnectExhausted,
    RelayError,
    SinkError,
    SinkPermanentError,
    SinkTransientError,
    SourceAuthFailed,
    SourceError,
    SourceUnreachable,
    StreamInterrupted,
)
from .filters import FilterResult, IngestionFilter
from .formatter import format_line, format_preview
from .ingest import IngestPipeline
from .models import Batch, LogEvent, ParsedLog, Severity, SourceType, SubBatch
from .queue import PendingQueue
from .rate_limiter import RateLimiter
from .reassembler import LineReassembler
from .source import HerokuSource
from .supervisor import ReconnectState, StreamSupervisor, SupervisorState

__all__ = [
    # Daemon
    "RelayDaemon",
    "run_relay",
    # Pipeline stages
    "LineReassembler",
    "IngestionFilter",
    "FilterResult",
    "format_line",
    "format_preview",
    "classify_source",
    "detect_severity",
    "SourceInfo",
    "DedupCache",
    "dedup_key",
    "IngestPipeline",
    "PendingQueue",
    "Batcher",
    "DeliveryWorker",
    "StreamSupervisor",
    "SupervisorState",
    "ReconnectState",
    # Collaborators
    "HerokuSource",
    "DiscordSink",
    "RateLimiter",
    # Models
    "LogEvent",
    "ParsedLog",
    "SourceType",
    "Severity",
    "Batch",
    "SubBatch",
    # Errors
    "RelayError",
    "SourceError",
    "SourceUnreachable",
    "SourceAuthFailed",
    "StreamInterrupted",
    "ReconnectExhausted",
    "SinkError",
    "SinkPermanentError",
    "SinkTransientError",
]
