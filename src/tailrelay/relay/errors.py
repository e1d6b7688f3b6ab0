"""Error taxonomy for the relay pipeline."""


class RelayError(Exception):
    """Base class for relay errors."""


class SourceError(RelayError):
    """Problem talking to the log source."""


class SourceUnreachable(SourceError):
    """The source could not be reached at startup (not found, network, API error)."""

    def __init__(self, message: str, reason: str = "network"):
        super().__init__(message)
        self.reason = reason  # not_found, network, api


class SourceAuthFailed(SourceError):
    """The source rejected our credentials. Retrying cannot help."""


class StreamInterrupted(SourceError):
    """The tail stream ended or could not be opened."""


class ReconnectExhausted(StreamInterrupted):
    """All reconnect attempts were used without getting the stream back."""

    def __init__(self, attempts: int):
        super().__init__(f"Gave up after {attempts} reconnect attempts")
        self.attempts = attempts


class SinkError(RelayError):
    """Delivery to the sink failed."""

    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.reason = reason


class SinkPermanentError(SinkError):
    """The sink refused this payload for good (permission_denied, payload_invalid)."""


class SinkTransientError(SinkError):
    """Delivery may succeed later (rate_limited, other)."""

    def __init__(self, message: str, reason: str, retry_after: float | None = None):
        super().__init__(message, reason)
        self.retry_after = retry_after
