"""End-to-end tests for the relay daemon, the metrics endpoint and the CLI."""

import json
from datetime import datetime, timedelta, timezone

import pytest
from click.testing import CliRunner
from conftest import FakeSink, FakeSource, FakeStream, heroku_line, wait_until

from tailrelay.cli import main
from tailrelay.config import RelayConfig
from tailrelay.metrics import make_app
from tailrelay.relay import ReconnectExhausted, RelayDaemon, SourceAuthFailed

_ENV_VARS = ["HEROKU_API_KEY", "HEROKU_AUTH", "HEROKU_APP", "DISCORD_WEBHOOK_URL"]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config():
    return RelayConfig(
        heroku_api_key="key",
        heroku_app="my-app",
        discord_webhook_url="https://discord.com/api/webhooks/1/x",
        queue_delay_ms=10,
        group_delay_ms=0,
        retry_delay_ms=0,
        reconnect_delay_ms=1,
        reconnect_max_delay_ms=5,
        line_flush_timeout_ms=60_000,
        shutdown_timeout_ms=4000,
        stats_interval_minutes=0,
    )


class TestRelayDaemon:
    """Tests for the wired pipeline."""

    def test_lines_reach_sink(self, config):
        now = datetime.now(timezone.utc) + timedelta(seconds=1)
        router = heroku_line(
            "heroku[router]",
            'at=info method=GET path="/api?token=s3cret" status=200 service=5ms',
            now,
        )
        app = heroku_line("app[web.1]", "Listening on 3000", now + timedelta(milliseconds=1))
        stale = heroku_line("app[web.1]", "from yesterday", now - timedelta(days=1))
        stream = FakeStream(
            [f"{router}\n{app}\n".encode(), f"{stale}\nConnecting to logs...\n".encode()],
            hold=True,
        )
        sink = FakeSink()
        daemon = RelayDaemon(config, source=FakeSource([stream]), sink=sink)

        daemon.start()
        try:
            assert wait_until(lambda: len(sink.delivered_lines) == 2)
        finally:
            daemon.stop()

        lines = sink.delivered_lines
        assert "s3cret" not in lines[0]
        assert lines[0].endswith("ROUTER ✅ GET /api?token=[token] → 200 (5ms)")
        assert lines[1].endswith("APP[web.1] Listening on 3000")

        stats = daemon.stats()
        assert stats["ingest"]["old_logs_filtered"] == 1
        assert stats["ingest"]["noise_dropped"] == 1
        assert stats["queue_size"] == 0

    def test_duplicates_delivered_once(self, config):
        line = heroku_line("app[web.1]", "same line", datetime.now(timezone.utc) + timedelta(seconds=1))
        stream = FakeStream([f"{line}\n{line}\n".encode()], hold=True)
        sink = FakeSink()
        daemon = RelayDaemon(config, source=FakeSource([stream]), sink=sink)

        daemon.start()
        try:
            assert wait_until(lambda: len(sink.delivered_lines) == 1)
        finally:
            daemon.stop()

        assert len(sink.delivered_lines) == 1
        assert daemon.stats()["dedup"]["duplicates"] == 1

    def test_stop_delivers_held_partial_line(self, config):
        stream = FakeStream([b"first line\nheld back"], hold=True)
        sink = FakeSink()
        daemon = RelayDaemon(config, source=FakeSource([stream]), sink=sink)

        daemon.start()
        assert wait_until(lambda: sink.delivered_lines == ["first line"])
        daemon.stop()

        assert sink.delivered_lines == ["first line", "held back"]

    def test_stop_is_idempotent(self, config):
        daemon = RelayDaemon(config, source=FakeSource([FakeStream(hold=True)]), sink=FakeSink())
        daemon.start()

        daemon.stop()
        daemon.stop()

    def test_startup_failure_propagates(self, config):
        source = FakeSource(verify_error=SourceAuthFailed("Invalid Heroku API token"))
        daemon = RelayDaemon(config, source=source, sink=FakeSink())

        with pytest.raises(SourceAuthFailed):
            daemon.start()

        assert source.opened == 0

    def test_run_raises_when_reconnects_exhausted(self, config):
        config.max_reconnect_attempts = 2
        source = FakeSource([FakeStream()])
        daemon = RelayDaemon(config, source=source, sink=FakeSink())

        with pytest.raises(ReconnectExhausted):
            daemon.run()

        assert source.opened == 3

    def test_report_stats(self, config):
        daemon = RelayDaemon(config, source=FakeSource(), sink=FakeSink())
        daemon.report_stats()

        stats = daemon.stats()
        assert set(stats) >= {"stream", "ingest", "dedup", "queue_size", "delivery"}


def _call(app, path):
    captured = {}

    def start_response(status, headers):
        captured["status"] = status
        captured["headers"] = dict(headers)

    body = b"".join(app({"PATH_INFO": path}, start_response))
    return captured["status"], captured["headers"], body


class TestMetricsApp:
    """Tests for the metrics WSGI app."""

    def test_metrics(self):
        status, headers, body = _call(make_app(), "/metrics")
        assert status == "200 OK"
        assert b"tailrelay_logs_received" in body

    def test_health(self):
        status, _, body = _call(make_app(), "/health")
        assert (status, body) == ("200 OK", b"ok")

    def test_stats(self):
        when = datetime(2024, 1, 15, tzinfo=timezone.utc)
        status, headers, body = _call(make_app(lambda: {"queue_size": 3, "at": when}), "/stats")
        assert status == "200 OK"
        assert headers["Content-Type"] == "application/json"
        assert json.loads(body) == {"queue_size": 3, "at": str(when)}

    def test_stats_without_provider(self):
        status, _, _ = _call(make_app(), "/stats")
        assert status == "404 Not Found"


class TestCli:
    """Tests for the command line interface."""

    @pytest.fixture
    def runner(self):
        return CliRunner()

    @pytest.fixture
    def config_path(self, tmp_path):
        return str(tmp_path / "missing.yaml")

    def test_version(self, runner, config_path):
        result = runner.invoke(main, ["--config", config_path, "version"])
        assert result.exit_code == 0
        assert result.output.strip() == "0.1.0"

    def test_format_line(self, runner, config_path):
        line = "2024-01-15T10:30:45.000000+00:00 heroku[web.1]: State changed from starting to up"
        result = runner.invoke(main, ["--config", config_path, "format", line])

        assert result.exit_code == 0
        assert result.output.strip() == "[2024-01-15 10:30:45] DYNO[web.1] 🟢 État: starting → up"

    def test_format_stdin(self, runner, config_path):
        stdin = "2024-01-15T10:30:45Z app[web.1]: hello\nnot a heroku line\n\n"
        result = runner.invoke(main, ["--config", config_path, "format"], input=stdin)

        assert result.exit_code == 0
        assert result.output.splitlines() == [
            "[2024-01-15 10:30:45] APP[web.1] hello",
            "(unparsed) not a heroku line",
        ]

    def test_format_json(self, runner, config_path):
        result = runner.invoke(
            main, ["--config", config_path, "format", "--json", "2024-01-15T10:30:45Z heroku[api]: Release v3"]
        )

        preview = json.loads(result.output)
        assert preview["success"] is True
        assert preview["source_type"] == "api"
        assert preview["formatted"].endswith("📦 Release v3")

    def test_run_requires_settings(self, runner, config_path):
        result = runner.invoke(main, ["--config", config_path, "run"])

        assert result.exit_code == 2
        assert "HEROKU_API_KEY" in result.output

    def test_send_requires_webhook(self, runner, config_path):
        result = runner.invoke(main, ["--config", config_path, "send", "hi"])
        assert result.exit_code == 2

    def test_config_file_values(self, runner, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("queue:\n  max_message_length: 120\n")
        line = "2024-01-15T10:30:45Z app[web.1]: " + "x" * 500

        result = runner.invoke(main, ["--config", str(path), "format", line])

        assert len(result.output.strip()) <= 120
