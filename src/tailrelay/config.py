"""Configuration loading for tailrelay."""

import os
from dataclasses import dataclass, fields
from pathlib import Path

import yaml

# field name -> (environment variable, YAML path)
_SOURCES: dict[str, tuple[str, tuple[str, ...]]] = {
    "heroku_api_key": ("HEROKU_API_KEY", ("heroku", "api_key")),
    "heroku_app": ("HEROKU_APP", ("heroku", "app")),
    "discord_webhook_url": ("DISCORD_WEBHOOK_URL", ("discord", "webhook_url")),
    "discord_username": ("DISCORD_USERNAME", ("discord", "username")),
    "max_messages_per_minute": ("MAX_MESSAGES_PER_MINUTE", ("discord", "max_messages_per_minute")),
    "max_message_length": ("MAX_MESSAGE_LENGTH", ("queue", "max_message_length")),
    "queue_delay_ms": ("QUEUE_DELAY_MS", ("queue", "delay_ms")),
    "group_delay_ms": ("GROUP_DELAY_MS", ("queue", "group_delay_ms")),
    "retry_delay_ms": ("RETRY_DELAY_MS", ("queue", "retry_delay_ms")),
    "max_logs_per_type": ("MAX_LOGS_PER_TYPE", ("queue", "max_logs_per_type")),
    "dedup_cache_size": ("DEDUP_CACHE_SIZE", ("queue", "dedup_cache_size")),
    "max_reconnect_attempts": ("MAX_RECONNECT_ATTEMPTS", ("reconnect", "max_attempts")),
    "reconnect_delay_ms": ("RECONNECT_DELAY_MS", ("reconnect", "delay_ms")),
    "reconnect_max_delay_ms": ("RECONNECT_MAX_DELAY_MS", ("reconnect", "max_delay_ms")),
    "stale_log_tolerance_ms": ("STALE_LOG_TOLERANCE_MS", ("stream", "stale_tolerance_ms")),
    "line_flush_timeout_ms": ("LINE_FLUSH_TIMEOUT_MS", ("stream", "line_flush_timeout_ms")),
    "shutdown_timeout_ms": ("SHUTDOWN_TIMEOUT_MS", ("stream", "shutdown_timeout_ms")),
    "stats_interval_minutes": ("STATS_INTERVAL_MINUTES", ("monitoring", "stats_interval_minutes")),
    "metrics_port": ("METRICS_PORT", ("monitoring", "metrics_port")),
    "log_level": ("LOG_LEVEL", ("logging", "level")),
    "log_format": ("LOG_FORMAT", ("logging", "format")),
}

# Older deployments set the Heroku token under this name
_LEGACY_ENV = {"heroku_api_key": "HEROKU_AUTH"}

_REQUIRED = ("heroku_api_key", "heroku_app", "discord_webhook_url")


@dataclass
class RelayConfig:
    """Application configuration."""

    heroku_api_key: str | None = None
    heroku_app: str | None = None
    discord_webhook_url: str | None = None
    discord_username: str = "Heroku Tail"
    max_messages_per_minute: int = 30
    max_message_length: int = 1900
    queue_delay_ms: int = 1000
    group_delay_ms: int = 200
    retry_delay_ms: int = 5000
    max_logs_per_type: int = 20
    dedup_cache_size: int = 1000
    max_reconnect_attempts: int = 5
    reconnect_delay_ms: int = 5000
    reconnect_max_delay_ms: int = 30000
    stale_log_tolerance_ms: int = 1000
    line_flush_timeout_ms: int = 2000
    shutdown_timeout_ms: int = 10000
    stats_interval_minutes: int = 15
    metrics_port: int = 0  # 0 disables the metrics server
    log_level: str = "INFO"
    log_format: str = "auto"  # auto, json, console

    @classmethod
    def from_env(cls) -> "RelayConfig":
        """Load configuration from environment variables."""
        config = cls()
        for name, (env_var, _) in _SOURCES.items():
            value = os.environ.get(env_var)
            if value is None and name in _LEGACY_ENV:
                value = os.environ.get(_LEGACY_ENV[name])
            if value is not None:
                config._set(name, value)
        return config

    @classmethod
    def from_file(cls, path: Path) -> "RelayConfig":
        """Load configuration from a YAML file. Environment variables win."""
        config = cls.from_env()

        if not path.exists():
            return config

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        for name, (env_var, yaml_path) in _SOURCES.items():
            legacy = _LEGACY_ENV.get(name)
            if env_var in os.environ or (legacy and legacy in os.environ):
                continue
            value = data
            for key in yaml_path:
                value = value.get(key) if isinstance(value, dict) else None
            if value is not None:
                config._set(name, value)

        return config

    def _set(self, name: str, value: object) -> None:
        field_type = {f.name: f.type for f in fields(self)}[name]
        if field_type is int:
            value = int(value)
        else:
            value = str(value)
        setattr(self, name, value)

    def validate(self) -> None:
        """Raise ValueError if required settings are missing or values are out of range."""
        missing = [_SOURCES[name][0] for name in _REQUIRED if not getattr(self, name)]
        if missing:
            raise ValueError(f"Missing required settings: {', '.join(missing)}")
        if self.max_message_length < 100:
            raise ValueError("MAX_MESSAGE_LENGTH must be at least 100")
        if self.dedup_cache_size < 1:
            raise ValueError("DEDUP_CACHE_SIZE must be at least 1")
        if self.max_logs_per_type < 1:
            raise ValueError("MAX_LOGS_PER_TYPE must be at least 1")
