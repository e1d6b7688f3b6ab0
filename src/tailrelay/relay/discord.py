"""Discord webhook sink for relayed log batches."""

from dataclasses import dataclass
from datetime import datetime, timezone

import httpx
import structlog

from .errors import SinkPermanentError, SinkTransientError
from .models import Severity, SourceType, SubBatch
from .rate_limiter import RateLimiter

log = structlog.get_logger()

# Discord embed colors
COLOR_ERROR = 0xFF0000  # Red
COLOR_WARNING = 0xFFAA00  # Orange
COLOR_INFO = 0x0099FF  # Blue
COLOR_STARTUP = 0x00FF00  # Green

TYPE_COLORS = {
    SourceType.ROUTER: 0x3498DB,
    SourceType.APP: 0x9B59B6,
    SourceType.DYNO: 0xE67E22,
    SourceType.API: 0x1ABC9C,
    SourceType.UNKNOWN: 0x95A5A6,
}

SEVERITY_TITLES = {
    Severity.ERROR: "🔴 Heroku error",
    Severity.WARNING: "🟡 Heroku warning",
}


@dataclass
class SinkStats:
    messages_sent: int = 0
    errors: int = 0
    rate_limited: int = 0


class DiscordSink:
    """Posts log batches to a Discord channel through a webhook.

    Errors, warnings and per-type groups go out as colored embeds, plain
    mixed info batches as a code block.
    """

    def __init__(
        self,
        webhook_url: str,
        app_name: str = "",
        username: str = "Heroku Tail",
        rate_limiter: RateLimiter | None = None,
        client: httpx.Client | None = None,
    ):
        """Initialize the sink.

        Args:
            webhook_url: Discord webhook URL
            app_name: Heroku app name, shown in embed footers
            username: Name the webhook posts under
            rate_limiter: Client-side send limit (default 30 messages per minute)
            client: httpx client, injectable for tests
        """
        self.webhook_url = webhook_url
        self.app_name = app_name
        self.username = username
        self.rate_limiter = rate_limiter or RateLimiter()
        self._client = client or httpx.Client(timeout=10.0)
        self._stats = SinkStats()

    def render(self, sub_batch: SubBatch) -> dict:
        """Build the webhook payload for one sub-batch."""
        block = f"```\n{sub_batch.content}\n```"
        payload: dict = {"username": self.username}

        if sub_batch.severity == Severity.INFO and sub_batch.source_type is None:
            payload["content"] = block
            return payload

        if sub_batch.source_type is None:
            title = SEVERITY_TITLES.get(sub_batch.severity, sub_batch.title)
        else:
            title = sub_batch.title
        if sub_batch.count > 1:
            title += f" ({sub_batch.count} logs)"

        if sub_batch.severity == Severity.ERROR:
            color = COLOR_ERROR
        elif sub_batch.severity == Severity.WARNING:
            color = COLOR_WARNING
        elif sub_batch.source_type is not None:
            color = TYPE_COLORS[sub_batch.source_type]
        else:
            color = COLOR_INFO

        payload["embeds"] = [
            {
                "title": title,
                "description": block,
                "color": color,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "footer": {"text": f"App: {self.app_name}"},
            }
        ]
        return payload

    def deliver(self, sub_batch: SubBatch) -> str | None:
        """Send one sub-batch.

        Returns:
            The Discord message id, if Discord returned one

        Raises:
            SinkTransientError: rate limited (locally or by Discord) or other failure
            SinkPermanentError: missing permission or payload rejected
        """
        if self.rate_limiter.is_limited():
            self._stats.rate_limited += 1
            raise SinkTransientError(
                "Local rate limit reached",
                "rate_limited",
                retry_after=self.rate_limiter.time_until_available(),
            )

        try:
            data = self._post(self.render(sub_batch))
        except (SinkTransientError, SinkPermanentError):
            self._stats.errors += 1
            raise

        self.rate_limiter.record()
        self._stats.messages_sent += 1
        log.debug(
            "Batch delivered",
            lines=sub_batch.count,
            severity=sub_batch.severity.value,
            source_type=sub_batch.source_type.value if sub_batch.source_type else "mixed",
        )
        return data.get("id")

    def _post(self, payload: dict) -> dict:
        try:
            response = self._client.post(self.webhook_url, params={"wait": "true"}, json=payload)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise SinkTransientError(f"Discord request failed: {e}", "other") from e

        status = response.status_code
        if status == 429:
            self._stats.rate_limited += 1
            raise SinkTransientError(
                "Discord rate limit", "rate_limited", retry_after=_retry_after(response)
            )
        if status == 403:
            raise SinkPermanentError(
                "Missing permission to post in this channel", "permission_denied"
            )
        if status == 400:
            raise SinkPermanentError(
                f"Discord rejected the payload: {response.text[:200]}", "payload_invalid"
            )
        if response.is_error:
            raise SinkTransientError(f"Discord API error {status}", "other")

        try:
            return response.json()
        except ValueError:
            return {}

    def send(self, message: str, ping: bool = False) -> bool:
        """Send a plain message. Returns True on success."""
        content = f"@here\n{message}" if ping else message
        try:
            self._post({"content": content, "username": self.username})
        except (SinkTransientError, SinkPermanentError) as e:
            log.error("Discord message failed", reason=e.reason, error=str(e))
            return False
        log.debug("Discord message sent", ping=ping)
        return True

    def send_embed(
        self,
        title: str,
        description: str,
        color: int,
        fields: list[dict] | None = None,
    ) -> bool:
        """Send a single embed. Returns True on success."""
        embed: dict = {
            "title": title,
            "description": description,
            "color": color,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "footer": {"text": "Heroku Tail"},
        }
        if fields:
            embed["fields"] = fields

        try:
            self._post({"username": self.username, "embeds": [embed]})
        except (SinkTransientError, SinkPermanentError) as e:
            log.error("Discord embed failed", title=title, reason=e.reason, error=str(e))
            return False
        log.debug("Discord embed sent", title=title)
        return True

    def send_startup(self) -> bool:
        return self.send_embed(
            title="🚀 Heroku Tail started",
            description=f"Relaying logs for Heroku app `{self.app_name}`",
            color=COLOR_STARTUP,
        )

    def send_shutdown(self) -> bool:
        return self.send_embed(
            title="🛑 Heroku Tail stopped",
            description="Relay shut down cleanly.",
            color=COLOR_ERROR,
        )

    def stats(self) -> SinkStats:
        return SinkStats(**vars(self._stats))

    def close(self) -> None:
        self._client.close()


def _retry_after(response: httpx.Response) -> float | None:
    try:
        return float(response.json().get("retry_after"))
    except (ValueError, TypeError, AttributeError):
        pass
    header = response.headers.get("Retry-After")
    try:
        return float(header) if header else None
    except ValueError:
        return None
