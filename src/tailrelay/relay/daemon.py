"""Relay daemon that tails Heroku logs and posts them to Discord."""

import signal
import threading
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any

import schedule
import structlog

from tailrelay import __version__
from tailrelay.config import RelayConfig
from tailrelay.metrics import (
    QUEUE_PENDING,
    SERVICE_INFO,
    start_metrics_server,
    stop_metrics_server,
)

from .batcher import Batcher
from .dedup import DedupCache
from .delivery import DeliveryWorker, LogSink
from .discord import DiscordSink
from .filters import IngestionFilter
from .ingest import IngestPipeline
from .queue import PendingQueue
from .rate_limiter import RateLimiter
from .source import HerokuSource, LogSource
from .supervisor import ReconnectState, StreamSupervisor

log = structlog.get_logger()


class RelayDaemon:
    """Wires the pipeline together and runs it.

    supervisor (stream) -> ingest (filter, format, dedup) -> queue
    -> delivery worker (batcher, sink)
    """

    def __init__(
        self,
        config: RelayConfig,
        source: LogSource | None = None,
        sink: LogSink | None = None,
    ):
        """Initialize the daemon.

        Args:
            config: Relay configuration
            source: Log source (default: Heroku API + CLI)
            sink: Delivery sink (default: Discord webhook)
        """
        self.config = config
        self.app = config.heroku_app or ""
        self.source = source or HerokuSource(api_key=config.heroku_api_key or "")
        self.sink = sink or DiscordSink(
            config.discord_webhook_url or "",
            app_name=self.app,
            username=config.discord_username,
            rate_limiter=RateLimiter(max_messages=config.max_messages_per_minute),
        )

        self.started_at = datetime.now(timezone.utc)
        self.queue = PendingQueue()
        self.dedup = DedupCache(config.dedup_cache_size)
        self.ingest = IngestPipeline(
            IngestionFilter(self.started_at, tolerance_ms=config.stale_log_tolerance_ms),
            self.dedup,
            self.queue,
            max_length=config.max_message_length,
        )
        self.batcher = Batcher(
            self.queue,
            max_length=config.max_message_length,
            max_per_type=config.max_logs_per_type,
        )
        self.delivery = DeliveryWorker(
            self.queue,
            self.batcher,
            self.sink,
            inter_batch_delay=config.queue_delay_ms / 1000,
            group_delay=config.group_delay_ms / 1000,
            retry_delay=config.retry_delay_ms / 1000,
        )
        self.supervisor = StreamSupervisor(
            self.source,
            self.app,
            self.ingest.ingest,
            reconnect=ReconnectState(
                max_attempts=config.max_reconnect_attempts,
                initial_delay_ms=config.reconnect_delay_ms,
                max_delay_ms=config.reconnect_max_delay_ms,
            ),
            idle_timeout=config.line_flush_timeout_ms / 1000,
        )

        self.scheduler = schedule.Scheduler()
        self._stop_event = threading.Event()
        self._stopped = False
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        """Start delivery, then attach the stream.

        Raises:
            SourceUnreachable, SourceAuthFailed, StreamInterrupted: if the
            stream cannot be attached at startup
        """
        log.info("Starting relay", app=self.app, version=__version__)
        SERVICE_INFO.info({"app": self.app, "version": __version__})

        if self.config.metrics_port:
            start_metrics_server(port=self.config.metrics_port, stats_provider=self.stats)

        self.delivery.start()
        if isinstance(self.sink, DiscordSink):
            self.sink.send_startup()

        try:
            self.supervisor.start()
        except Exception:
            self.delivery.stop()
            raise

        if self.config.stats_interval_minutes > 0:
            self.scheduler.every(self.config.stats_interval_minutes).minutes.do(self.report_stats)
            thread = threading.Thread(target=self._schedule_loop, daemon=True)
            thread.start()
            self._threads.append(thread)

    def _schedule_loop(self) -> None:
        while not self._stop_event.wait(1):
            self.scheduler.run_pending()

    def report_stats(self) -> None:
        """Log a snapshot of the pipeline counters."""
        QUEUE_PENDING.set(len(self.queue))
        log.info("Relay stats", **self.stats())

    def run(self) -> None:
        """Start and block until stopped.

        Raises:
            The supervisor's fatal error (e.g. ReconnectExhausted) if the stream
            gave up on its own
        """
        self.start()

        try:
            while not self._stop_event.is_set():
                if self.supervisor.wait(timeout=1):
                    break
        except KeyboardInterrupt:
            log.info("Received shutdown signal")

        fatal = self.supervisor.fatal_error
        self.stop()
        if fatal is not None:
            raise fatal

    def request_stop(self) -> None:
        """Ask run() to return. Safe to call from a signal handler."""
        self._stop_event.set()

    def stop(self) -> None:
        """Shut down within shutdown_timeout_ms.

        Stops reading, flushes the held partial line, drains the queue with a
        short pause between batches, then says goodbye.
        """
        if self._stopped:
            return
        self._stopped = True
        log.info("Stopping relay")
        self._stop_event.set()

        timeout = self.config.shutdown_timeout_ms / 1000
        self.supervisor.stop(timeout=timeout / 2)
        self.delivery.drain(timeout=timeout / 2)

        if isinstance(self.sink, DiscordSink):
            self.sink.send_shutdown()
            self.sink.close()
        self.scheduler.clear()
        if self.config.metrics_port:
            stop_metrics_server()
        log.info("Relay stopped", **self.stats())

    def stats(self) -> dict[str, Any]:
        """Counters from every component."""
        stats = {
            "stream": asdict(self.supervisor.stats()),
            "ingest": asdict(self.ingest.stats()),
            "dedup": asdict(self.dedup.stats()),
            "queue_size": len(self.queue),
            "pending_retries": self.delivery.pending_retries,
            "delivery": asdict(self.delivery.stats()),
        }
        if isinstance(self.sink, DiscordSink):
            stats["sink"] = asdict(self.sink.stats())
        return stats


def run_relay(config: RelayConfig) -> None:
    """Validate config and run the relay until interrupted.

    SIGTERM is handled like Ctrl-C.
    """
    config.validate()
    daemon = RelayDaemon(config)

    def _handle_sigterm(signum: int, frame: object) -> None:
        log.info("Received SIGTERM")
        daemon.request_stop()

    signal.signal(signal.SIGTERM, _handle_sigterm)
    daemon.run()
