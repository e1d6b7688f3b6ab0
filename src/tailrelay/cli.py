"""CLI for tailrelay.

Usage:
    tailrelay run --app my-app
    tailrelay check
    tailrelay test
    tailrelay send "Deploy finished"
    heroku logs -n 50 --app my-app | tailrelay format
"""

import json
import sys
from pathlib import Path

import click

from tailrelay import __version__
from tailrelay.config import RelayConfig
from tailrelay.logging import configure_logging, get_logger
from tailrelay.relay import DiscordSink, HerokuSource, RelayError, format_preview, run_relay

log = get_logger(__name__)


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=Path.home() / ".tailrelay" / "config.yaml",
    help="Config file path",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, config_path: Path, verbose: bool) -> None:
    """Relay Heroku logs to Discord."""
    ctx.ensure_object(dict)
    config = RelayConfig.from_file(config_path)
    if verbose:
        config.log_level = "DEBUG"
    configure_logging(config.log_level, config.log_format)
    ctx.obj["config"] = config


@main.command("run")
@click.option("--app", help="Heroku app name (or HEROKU_APP)")
@click.option("--webhook-url", help="Discord webhook URL (or DISCORD_WEBHOOK_URL)")
@click.option("--metrics-port", type=int, help="Serve Prometheus metrics on this port")
@click.pass_context
def run_cmd(
    ctx: click.Context,
    app: str | None,
    webhook_url: str | None,
    metrics_port: int | None,
) -> None:
    """Tail the app's logs and relay them until interrupted."""
    config: RelayConfig = ctx.obj["config"]
    if app:
        config.heroku_app = app
    if webhook_url:
        config.discord_webhook_url = webhook_url
    if metrics_port is not None:
        config.metrics_port = metrics_port

    try:
        config.validate()
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    click.echo(f"Relaying logs for {config.heroku_app}...")
    try:
        run_relay(config)
    except RelayError as e:
        log.error("Relay stopped on error", error=str(e), error_type=type(e).__name__)
        click.echo(f"Relay stopped: {e}", err=True)
        sys.exit(1)


@main.command("check")
@click.option("--app", help="Heroku app name (or HEROKU_APP)")
@click.pass_context
def check_cmd(ctx: click.Context, app: str | None) -> None:
    """Verify the Heroku token and app."""
    config: RelayConfig = ctx.obj["config"]
    app_name = app or config.heroku_app
    if not config.heroku_api_key or not app_name:
        raise click.UsageError("HEROKU_API_KEY and HEROKU_APP are required")

    source = HerokuSource(api_key=config.heroku_api_key)
    try:
        info = source.verify_reachable(app_name)
    except RelayError as e:
        click.echo(f"Heroku check failed: {e}", err=True)
        sys.exit(1)

    click.echo(f"OK: {info.get('name', app_name)}")
    region = info.get("region") or {}
    if isinstance(region, dict) and region.get("name"):
        click.echo(f"  region: {region['name']}")


def _sink(config: RelayConfig) -> DiscordSink:
    if not config.discord_webhook_url:
        raise click.UsageError("DISCORD_WEBHOOK_URL is required")
    return DiscordSink(
        config.discord_webhook_url,
        app_name=config.heroku_app or "",
        username=config.discord_username,
    )


@main.command("test")
@click.pass_context
def test_cmd(ctx: click.Context) -> None:
    """Send a test message to verify the Discord webhook."""
    sink = _sink(ctx.obj["config"])
    if sink.send_embed(
        title="🧪 Test message",
        description="tailrelay can post to this channel.",
        color=0x0099FF,
    ):
        click.echo("Test message sent successfully!")
    else:
        click.echo("Failed to send test message", err=True)
        sys.exit(1)


@main.command("send")
@click.argument("message")
@click.option("--ping", is_flag=True, help="@here the channel")
@click.pass_context
def send_cmd(ctx: click.Context, message: str, ping: bool) -> None:
    """Send a one-off message to Discord."""
    sink = _sink(ctx.obj["config"])
    if not sink.send(message, ping=ping):
        click.echo("Failed to send message", err=True)
        sys.exit(1)
    click.echo("Message sent")


@main.command("format")
@click.argument("line", required=False)
@click.option("--json", "as_json", is_flag=True, help="Print full details as JSON")
@click.pass_context
def format_cmd(ctx: click.Context, line: str | None, as_json: bool) -> None:
    """Show how log lines would be rendered.

    Reads LINE, or one line per input line from stdin.
    """
    config: RelayConfig = ctx.obj["config"]
    lines = [line] if line is not None else [raw.rstrip("\n") for raw in sys.stdin]

    for raw in lines:
        if not raw.strip():
            continue
        preview = format_preview(raw, config.max_message_length)
        if as_json:
            click.echo(json.dumps(preview, ensure_ascii=False))
        elif preview["success"]:
            click.echo(preview["formatted"])
        else:
            click.echo(f"(unparsed) {raw}")


@main.command("version")
def version_cmd() -> None:
    """Print the version."""
    click.echo(__version__)


if __name__ == "__main__":
    main()
