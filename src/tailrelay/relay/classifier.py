"""Source and severity classification for Heroku log lines."""

import re
from dataclasses import dataclass

from .models import Severity, SourceType


@dataclass(frozen=True)
class SourceInfo:
    """Result of classifying the source field of a log line."""

    source_type: SourceType
    label: str  # Shown in the rendered line, e.g. "DYNO[web.1]"
    detail: str  # Instance or raw source name


# Source patterns: (regex, source type, label template). Evaluated top to bottom,
# first match wins. The template receives the first capture group.
SOURCE_PATTERNS: list[tuple[re.Pattern, SourceType, str]] = [
    (re.compile(r"^app\[([^\]]+)\]$"), SourceType.APP, "APP[{}]"),
    (re.compile(r"^heroku\[(router)\]$"), SourceType.ROUTER, "ROUTER"),
    (
        re.compile(r"^heroku\[((?:web|worker|scheduler)\.[^\]]+)\]$"),
        SourceType.DYNO,
        "DYNO[{}]",
    ),
    (re.compile(r"^heroku\[(api)\]$"), SourceType.API, "API"),
]


def classify_source(source: str) -> SourceInfo:
    """Classify the `source` part of a `timestamp source: message` line.

    Args:
        source: Raw source field (e.g., "app[web.1]", "heroku[router]")

    Returns:
        SourceInfo; unmatched sources are UNKNOWN with the raw name as detail
    """
    source = source.strip()
    for pattern, source_type, template in SOURCE_PATTERNS:
        match = pattern.match(source)
        if match:
            detail = match.group(1)
            return SourceInfo(source_type, template.format(detail), detail)

    return SourceInfo(SourceType.UNKNOWN, f"UNKNOWN[{source}]", source)


# Titles for per-type sub-batches
TYPE_TITLES: dict[SourceType, str] = {
    SourceType.ROUTER: "📡 Router logs",
    SourceType.APP: "🔧 Application logs",
    SourceType.DYNO: "⚙️ Dyno logs",
    SourceType.API: "📦 API logs",
    SourceType.UNKNOWN: "❓ Other logs",
}

MIXED_TITLE = "📊 Heroku logs"

# Keywords are matched case-insensitively, markers are the formatter's own prefixes
_ERROR_KEYWORDS = ("error", "exception", "failed", "fatal", "crash", "panic")
_ERROR_MARKERS = ("❌", "❗")
_WARNING_KEYWORDS = ("warning", "warn", "deprecated", "timeout")
_WARNING_MARKERS = ("⚠️", "🟡")


def is_error_text(text: str) -> bool:
    lowered = text.lower()
    return any(k in lowered for k in _ERROR_KEYWORDS) or any(m in text for m in _ERROR_MARKERS)


def is_warning_text(text: str) -> bool:
    lowered = text.lower()
    return any(k in lowered for k in _WARNING_KEYWORDS) or any(
        m in text for m in _WARNING_MARKERS
    )


def detect_severity(lines: list[str]) -> Severity:
    """Severity of a group of rendered lines.

    ERROR if any line looks like an error, WARNING if any looks like a warning
    and none like an error, INFO otherwise.
    """
    if any(is_error_text(line) for line in lines):
        return Severity.ERROR
    if any(is_warning_text(line) for line in lines):
        return Severity.WARNING
    return Severity.INFO
