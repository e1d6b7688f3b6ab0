"""Prometheus metrics for the log relay.

All metrics use the 'tailrelay_' prefix.
"""

from prometheus_client import Counter, Gauge, Info

SERVICE_INFO = Info(
    "tailrelay_service",
    "Relay metadata",
)

# Ingest metrics
LOGS_RECEIVED = Counter(
    "tailrelay_logs_received_total",
    "Complete lines read from the tail stream",
)

LOGS_DROPPED = Counter(
    "tailrelay_logs_dropped_total",
    "Lines dropped before queueing",
    ["reason"],  # noise, stale, duplicate
)

LOGS_QUEUED = Counter(
    "tailrelay_logs_queued_total",
    "Lines added to the pending queue",
)

QUEUE_PENDING = Gauge(
    "tailrelay_queue_pending",
    "Lines waiting to be delivered",
)

# Delivery metrics
MESSAGES_SENT = Counter(
    "tailrelay_messages_sent_total",
    "Messages delivered to the sink",
    ["severity"],  # error, warning, info
)

DELIVERY_ERRORS = Counter(
    "tailrelay_delivery_errors_total",
    "Failed deliveries",
    ["reason"],  # permission_denied, payload_invalid, rate_limited, other
)

LOGS_REQUEUED = Counter(
    "tailrelay_logs_requeued_total",
    "Lines put back in the queue after a transient delivery failure",
)

# Stream metrics
RECONNECTIONS = Counter(
    "tailrelay_reconnections_total",
    "Tail stream reconnection attempts",
)

STREAM_UP = Gauge(
    "tailrelay_stream_up",
    "1 while the tail stream is attached",
)
