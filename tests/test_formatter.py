"""Tests for log formatting and classification."""

import pytest

from tailrelay.relay import Severity, SourceType, classify_source, detect_severity, format_line
from tailrelay.relay.formatter import (
    SENSITIVE_PARAMS,
    extract_timestamp,
    format_dyno_content,
    format_preview,
    format_router_content,
    sanitize_path,
)

TS = "2024-01-15T10:30:45.123456+00:00"


class TestRouterFormatting:
    """Tests for heroku[router] lines."""

    def test_example_line(self):
        """Query tokens are redacted and the status gets a success marker."""
        content = 'method=GET path="/api/users?token=abc123" status=200 service=15ms'
        assert format_router_content(content) == "✅ GET /api/users?token=[token] → 200 (15ms)"

    def test_full_router_line(self):
        line = (
            f'{TS} heroku[router]: at=info method=POST path="/login" host=app.herokuapp.com '
            "request_id=abc fwd=1.2.3.4 dyno=web.1 connect=0ms service=42ms status=302 bytes=100"
        )
        parsed = format_line(line)
        assert parsed.was_formatted is True
        assert parsed.source_type == SourceType.ROUTER
        assert parsed.rendered_text == "[2024-01-15 10:30:45] ROUTER ↪️ POST /login → 302 (42ms)"

    @pytest.mark.parametrize(
        "status,indicator",
        [("201", "✅ "), ("304", "↪️ "), ("404", "⚠️ "), ("503", "❌ "), ("101", "❔ ")],
    )
    def test_status_indicators(self, status, indicator):
        content = f"method=GET path=/ status={status} service=1ms"
        assert format_router_content(content) == f"{indicator}GET / → {status} (1ms)"

    def test_unparseable_status_uses_placeholder(self):
        """No indicator and ??? when status is not a positive integer."""
        assert format_router_content("method=GET path=/ status=abc") == "GET / → ???"
        assert format_router_content("method=GET path=/ status=0") == "GET / → ???"
        assert format_router_content("method=GET path=/") == "GET / → ???"

    def test_non_ascii_digit_status_uses_placeholder(self):
        """Superscript digits are not a status code and do not break the line."""
        content = "method=GET path=/ status=\u00b2 service=5ms"
        assert format_router_content(content) == "GET / → ??? (5ms)"

        parsed = format_line(f"{TS} heroku[router]: at=info {content}")
        assert parsed.was_formatted is True
        assert parsed.rendered_text == "[2024-01-15 10:30:45] ROUTER GET / → ??? (5ms)"

    def test_long_path_truncated(self):
        path = "/" + "a" * 150
        result = format_router_content(f"method=GET path={path} status=200")
        rendered_path = result.split(" ")[2]
        assert len(rendered_path) == 100
        assert rendered_path.endswith("...")

    def test_missing_method_falls_back_to_raw(self):
        """Router lines without method/path keep their raw content."""
        assert format_router_content('at=error code=H10 desc="App crashed"') is None
        parsed = format_line(f'{TS} heroku[router]: at=error code=H10 desc="App crashed"')
        assert parsed.was_formatted is True
        assert parsed.rendered_text.endswith('ROUTER at=error code=H10 desc="App crashed"')

    def test_field_names_must_stand_alone(self):
        """`xmethod=` is not mistaken for `method=`."""
        assert format_router_content("xmethod=GET path=/") is None


class TestRedaction:
    """Tests for query parameter redaction."""

    @pytest.mark.parametrize("key", SENSITIVE_PARAMS)
    def test_every_sensitive_key(self, key):
        result = sanitize_path(f"/x?{key}=SECRET&y=1")
        assert "SECRET" not in result
        assert result == f"/x?{key}=[token]&y=1"

    @pytest.mark.parametrize("key", SENSITIVE_PARAMS)
    def test_case_insensitive(self, key):
        result = sanitize_path(f"/x?{key.upper()}=hunter2value&y=1")
        assert "hunter2value" not in result
        assert result == f"/x?{key.upper()}=[token]&y=1"

    def test_every_occurrence(self):
        assert sanitize_path("/x?token=a&page=2&token=b") == "/x?token=[token]&page=2&token=[token]"

    def test_other_params_untouched(self):
        assert sanitize_path("/search?q=heroku&monkey=1") == "/search?q=heroku&monkey=1"


class TestAppFormatting:
    """Tests for app[...] lines."""

    def test_plain_message(self):
        parsed = format_line(f"{TS} app[web.1]: Listening on port 3000")
        assert parsed.source_type == SourceType.APP
        assert parsed.source_detail == "web.1"
        assert parsed.rendered_text == "[2024-01-15 10:30:45] APP[web.1] Listening on port 3000"

    @pytest.mark.parametrize(
        "message",
        ["Database error", "Request FAILED", "using fallback cache", "Unexpected token"],
    )
    def test_alert_marker(self, message):
        parsed = format_line(f"{TS} app[worker.1]: {message}")
        assert parsed.rendered_text.endswith(f"APP[worker.1] ❗ {message}")


class TestDynoFormatting:
    """Tests for heroku[web.N] and friends."""

    def test_state_change_example(self):
        assert format_dyno_content("State changed from starting to up") == "🟢 État: starting → up"

    @pytest.mark.parametrize(
        "to_state,emoji",
        [("down", "🔴"), ("starting", "🟡"), ("crashed", "💥"), ("idle", "🔄")],
    )
    def test_state_emojis(self, to_state, emoji):
        assert format_dyno_content(f"State changed from up to {to_state}") == (
            f"{emoji} État: up → {to_state}"
        )

    def test_process_lines(self):
        assert format_dyno_content("Process exited with status 0") == (
            "💀 Process exited with status 0"
        )
        assert format_dyno_content("Starting process with command `npm start`") == (
            "🚀 Starting process with command `npm start`"
        )

    def test_full_dyno_line(self):
        parsed = format_line(f"{TS} heroku[web.1]: State changed from starting to up")
        assert parsed.source_type == SourceType.DYNO
        assert parsed.rendered_text == "[2024-01-15 10:30:45] DYNO[web.1] 🟢 État: starting → up"


class TestApiFormatting:
    """Tests for heroku[api] lines."""

    def test_release(self):
        parsed = format_line(f"{TS} heroku[api]: Release v42 created by dev@example.com")
        assert parsed.source_type == SourceType.API
        assert parsed.rendered_text.endswith("API 📦 Release v42 created by dev@example.com")

    def test_deploy(self):
        parsed = format_line(f"{TS} heroku[api]: Deploy 1a2b3c by dev@example.com")
        assert parsed.rendered_text.endswith("API 🔨 Deploy 1a2b3c by dev@example.com")

    def test_other_api_message(self):
        parsed = format_line(f"{TS} heroku[api]: Scale to web=2 by dev@example.com")
        assert parsed.rendered_text.endswith("API Scale to web=2 by dev@example.com")


class TestUnparsable:
    """Lines without the `timestamp source: message` shape."""

    @pytest.mark.parametrize(
        "line",
        ["just some text", "npm WARN deprecated", "2024-01-15 10:30:45 app: not iso"],
    )
    def test_passthrough(self, line):
        parsed = format_line(line)
        assert parsed.was_formatted is False
        assert parsed.timestamp is None
        assert parsed.source_type == SourceType.UNKNOWN
        assert parsed.rendered_text == line

    def test_unknown_source_kept_as_is(self):
        parsed = format_line(f"{TS} heroku[postgres]: checkpoint complete")
        assert parsed.was_formatted is True
        assert parsed.source_type == SourceType.UNKNOWN
        assert parsed.rendered_text == (
            "[2024-01-15 10:30:45] UNKNOWN[heroku[postgres]] checkpoint complete"
        )


class TestTimestamps:
    """Timestamp parsing and rendering."""

    def test_zulu_timestamp(self):
        parsed = format_line("2024-01-15T10:30:45Z app[web.1]: hi")
        assert parsed.rendered_text == "[2024-01-15 10:30:45] APP[web.1] hi"
        assert parsed.timestamp is not None

    def test_malformed_timestamp_falls_back_to_slice(self):
        parsed = format_line("2024-13-45T10:30:45.000000+00:00 app[web.1]: hi")
        assert parsed.was_formatted is True
        assert parsed.timestamp is None
        assert parsed.rendered_text == "[2024-13-45 10:30:45] APP[web.1] hi"

    def test_extract_timestamp(self):
        ts = extract_timestamp(f"prefix {TS} app[web.1]: hi")
        assert ts is not None
        assert ts.year == 2024 and ts.microsecond == 123456
        assert extract_timestamp("no timestamp here") is None


class TestFormatLine:
    """General formatter properties."""

    def test_deterministic(self):
        line = f'{TS} heroku[router]: method=GET path="/" status=200 service=3ms'
        assert format_line(line) == format_line(line)

    def test_truncates_long_lines(self):
        parsed = format_line(f"{TS} app[web.1]: " + "x" * 3000)
        assert len(parsed.rendered_text) <= 1900
        assert parsed.rendered_text.endswith("[TRUNCATED]")

    def test_custom_limit(self):
        parsed = format_line(f"{TS} app[web.1]: " + "x" * 300, max_length=200)
        assert len(parsed.rendered_text) <= 200

    def test_preview(self):
        preview = format_preview(f"{TS} app[web.1]: hello")
        assert preview["success"] is True
        assert preview["formatted"] == "[2024-01-15 10:30:45] APP[web.1] hello"
        assert preview["length"] == len(preview["formatted"])
        assert format_preview("garbage")["success"] is False


class TestClassifier:
    """Tests for source and severity classification."""

    @pytest.mark.parametrize(
        "source,source_type,label",
        [
            ("app[web.1]", SourceType.APP, "APP[web.1]"),
            ("app[scheduler.3]", SourceType.APP, "APP[scheduler.3]"),
            ("heroku[router]", SourceType.ROUTER, "ROUTER"),
            ("heroku[web.2]", SourceType.DYNO, "DYNO[web.2]"),
            ("heroku[worker.1]", SourceType.DYNO, "DYNO[worker.1]"),
            ("heroku[scheduler.4]", SourceType.DYNO, "DYNO[scheduler.4]"),
            ("heroku[api]", SourceType.API, "API"),
            ("heroku[run.1]", SourceType.UNKNOWN, "UNKNOWN[heroku[run.1]]"),
            ("app", SourceType.UNKNOWN, "UNKNOWN[app]"),
        ],
    )
    def test_classify_source(self, source, source_type, label):
        info = classify_source(source)
        assert info.source_type == source_type
        assert info.label == label

    def test_severity_info(self):
        assert detect_severity(["GET / → 200", "all good"]) == Severity.INFO

    def test_severity_warning(self):
        assert detect_severity(["all good", "Request timeout after 30s"]) == Severity.WARNING
        assert detect_severity(["⚠️ GET /missing → 404"]) == Severity.WARNING

    def test_severity_error_wins(self):
        assert detect_severity(["deprecated API", "Unhandled exception"]) == Severity.ERROR
        assert detect_severity(["❗ something odd"]) == Severity.ERROR
