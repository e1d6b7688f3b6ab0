"""Turn raw Heroku log lines into readable one-line summaries.

A Heroku line looks like:

    2024-01-15T10:30:45.123456+00:00 heroku[router]: at=info method=GET path="/" status=200

The formatter splits it into timestamp, source and message, classifies the
source, and renders the message per source type. Lines that do not have this
shape are passed through untouched. Nothing in here raises on bad input.
"""

import re
from dataclasses import replace
from datetime import datetime

from .classifier import classify_source
from .models import LogEvent, ParsedLog, SourceType

DEFAULT_MAX_LENGTH = 1900

TRUNCATED_SUFFIX = "\n... [TRUNCATED]"

# Embedded ISO-8601 timestamp with zulu or numeric offset
TIMESTAMP_RE = re.compile(r"(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:\d{2}))")

LOG_LINE_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:\d{2}))\s+([^:]+):\s*(.*)$",
    re.DOTALL,
)

MAX_PATH_LENGTH = 100

REDACTION_MARKER = "[token]"

SENSITIVE_PARAMS = (
    "token",
    "access_token",
    "api_key",
    "key",
    "secret",
    "password",
    "pwd",
    "auth",
    "authorization",
    "session",
    "jwt",
)

_SENSITIVE_RE = re.compile(
    r"([?&](?:" + "|".join(re.escape(p) for p in SENSITIVE_PARAMS) + r")=)[^&\s]+",
    re.IGNORECASE,
)

_APP_ALERT_KEYWORDS = ("error", "fail", "fallback", "unexpected")

_STATE_CHANGE_RE = re.compile(r"State changed from (\w+) to (\w+)")

STATE_EMOJI = {
    "up": "🟢",
    "down": "🔴",
    "starting": "🟡",
    "crashed": "💥",
}


def extract_timestamp(line: str) -> datetime | None:
    """Find and parse the first embedded ISO-8601 timestamp, if any."""
    match = TIMESTAMP_RE.search(line)
    if not match:
        return None
    try:
        return datetime.fromisoformat(match.group(1))
    except ValueError:
        return None


def format_timestamp(raw: str) -> str:
    """Render an ISO timestamp as `YYYY-MM-DD HH:MM:SS` in its own offset.

    Falls back to a slice of the raw string when it does not parse.
    """
    try:
        return datetime.fromisoformat(raw).strftime("%Y-%m-%d %H:%M:%S")
    except ValueError:
        return raw[:19].replace("T", " ")


def truncate(text: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Cut text to max_length, marking the cut."""
    if len(text) <= max_length:
        return text
    return text[: max(max_length - 20, 0)] + TRUNCATED_SUFFIX


def sanitize_path(path: str) -> str:
    """Replace the values of sensitive query parameters with a marker."""
    return _SENSITIVE_RE.sub(lambda m: m.group(1) + REDACTION_MARKER, path)


def extract_router_field(content: str, field: str) -> str | None:
    """Value of `field=value` in a router line, without surrounding quotes."""
    match = re.search(rf'(?<![\w-]){re.escape(field)}=("[^"]*"|\S+)', content)
    if not match:
        return None
    value = match.group(1)
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        value = value[1:-1]
    return value


def _status_indicator(status: int) -> str:
    if 200 <= status < 300:
        return "✅ "
    if 300 <= status < 400:
        return "↪️ "
    if 400 <= status < 500:
        return "⚠️ "
    if status >= 500:
        return "❌ "
    return "❔ "


def format_router_content(content: str) -> str | None:
    """Render a router line as `✅ GET /path → 200 (15ms)`.

    Returns None when method or path is missing.
    """
    method = extract_router_field(content, "method")
    path = extract_router_field(content, "path")
    if not method or not path:
        return None

    raw_status = extract_router_field(content, "status")
    # isdigit alone accepts superscripts and other non-ASCII digits
    is_number = bool(raw_status) and raw_status.isascii() and raw_status.isdigit()
    status = int(raw_status) if is_number else 0
    service = extract_router_field(content, "service")

    if len(path) > MAX_PATH_LENGTH:
        path = path[: MAX_PATH_LENGTH - 3] + "..."
    path = sanitize_path(path)

    indicator = _status_indicator(status) if status > 0 else ""
    display_status = str(status) if status > 0 else "???"
    service_time = f" ({service})" if service and service != "NaN" else ""

    return f"{indicator}{method} {path} → {display_status}{service_time}"


def format_app_content(content: str) -> str:
    lowered = content.lower()
    if any(keyword in lowered for keyword in _APP_ALERT_KEYWORDS):
        return f"❗ {content}"
    return content


def format_dyno_content(content: str) -> str:
    match = _STATE_CHANGE_RE.search(content)
    if match:
        from_state, to_state = match.groups()
        emoji = STATE_EMOJI.get(to_state, "🔄")
        return f"{emoji} État: {from_state} → {to_state}"

    if "Process exited" in content:
        return f"💀 {content}"
    if "Starting process" in content:
        return f"🚀 {content}"
    return content


def format_api_content(content: str) -> str:
    if "Release v" in content:
        return f"📦 {content}"
    if "Deploy " in content or "Build " in content:
        return f"🔨 {content}"
    return content


def format_line(raw_line: str, max_length: int = DEFAULT_MAX_LENGTH) -> ParsedLog:
    """Parse and render one raw log line.

    Args:
        raw_line: The line as received (surrounding whitespace is ignored)
        max_length: Maximum length of the composed line

    Returns:
        ParsedLog; was_formatted is False and rendered_text is the raw line
        when the line does not look like `timestamp source: message`
    """
    line = raw_line.strip()
    match = LOG_LINE_RE.match(line)
    if not match:
        return ParsedLog(
            timestamp=None,
            source_type=SourceType.UNKNOWN,
            source_detail="",
            rendered_text=raw_line,
            was_formatted=False,
            raw_line=raw_line,
        )

    raw_timestamp, source, content = match.groups()
    info = classify_source(source)

    if info.source_type == SourceType.ROUTER:
        rendered = format_router_content(content) or content
    elif info.source_type == SourceType.APP:
        rendered = format_app_content(content)
    elif info.source_type == SourceType.DYNO:
        rendered = format_dyno_content(content)
    elif info.source_type == SourceType.API:
        rendered = format_api_content(content)
    else:
        rendered = content

    try:
        timestamp = datetime.fromisoformat(raw_timestamp)
    except ValueError:
        timestamp = None

    composed = f"[{format_timestamp(raw_timestamp)}] {info.label} {rendered}"
    return ParsedLog(
        timestamp=timestamp,
        source_type=info.source_type,
        source_detail=info.detail,
        rendered_text=truncate(composed, max_length),
        was_formatted=True,
        raw_line=raw_line,
    )


def format_event(event: LogEvent, max_length: int = DEFAULT_MAX_LENGTH) -> ParsedLog:
    """format_line for a LogEvent, carrying over its arrival time."""
    return replace(format_line(event.raw_line, max_length), received_at=event.received_at)


def format_preview(raw_line: str, max_length: int = DEFAULT_MAX_LENGTH) -> dict:
    """Formatting details for one line, for the `format` CLI command."""
    parsed = format_line(raw_line, max_length)
    return {
        "original": raw_line,
        "formatted": parsed.rendered_text if parsed.was_formatted else None,
        "source_type": parsed.source_type.value,
        "success": parsed.was_formatted,
        "length": len(parsed.rendered_text) if parsed.was_formatted else 0,
    }
