"""Prometheus metrics for tailrelay.

Usage:
    from tailrelay.metrics import start_metrics_server, LOGS_RECEIVED

    # Start metrics server (call once at startup)
    start_metrics_server(port=9100)

    LOGS_RECEIVED.inc()
"""

from tailrelay.metrics.relay import (
    DELIVERY_ERRORS,
    LOGS_DROPPED,
    LOGS_QUEUED,
    LOGS_RECEIVED,
    LOGS_REQUEUED,
    MESSAGES_SENT,
    QUEUE_PENDING,
    RECONNECTIONS,
    SERVICE_INFO,
    STREAM_UP,
)
from tailrelay.metrics.server import make_app, start_metrics_server, stop_metrics_server

__all__ = [
    "make_app",
    "start_metrics_server",
    "stop_metrics_server",
    "SERVICE_INFO",
    "LOGS_RECEIVED",
    "LOGS_DROPPED",
    "LOGS_QUEUED",
    "QUEUE_PENDING",
    "MESSAGES_SENT",
    "DELIVERY_ERRORS",
    "LOGS_REQUEUED",
    "RECONNECTIONS",
    "STREAM_UP",
]
