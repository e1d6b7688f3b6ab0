"""Log sources: the interface the supervisor relies on, and the Heroku implementation."""

import os
import subprocess
import threading
from collections.abc import Iterator
from typing import Protocol

import httpx
import structlog

from .errors import SourceAuthFailed, SourceUnreachable, StreamInterrupted

log = structlog.get_logger()

HEROKU_API_URL = "https://api.heroku.com"

# Substrings in Heroku CLI error output that mean retrying is pointless
AUTH_ERROR_MARKERS = ("Invalid credentials", "Couldn't find that app")

DEFAULT_COMMAND = ["heroku", "logs", "--tail", "--app", "{app}"]


class LogStream(Protocol):
    """An attached tail stream."""

    def chunks(self) -> Iterator[bytes | str]:
        """Yield chunks in arrival order; return when the stream ends.

        Raises SourceAuthFailed or StreamInterrupted on failure.
        """
        ...

    def close(self) -> None:
        """Detach. Safe to call from another thread and more than once."""
        ...


class LogSource(Protocol):
    """Where log streams come from."""

    def verify_reachable(self, app: str) -> dict:
        """Check that the app exists and we may read it.

        Raises SourceAuthFailed or SourceUnreachable.
        """
        ...

    def open_stream(self, app: str) -> LogStream:
        """Attach a new tail stream. Raises StreamInterrupted or SourceAuthFailed."""
        ...


class HerokuStream:
    """A running `heroku logs --tail` process."""

    def __init__(self, process: subprocess.Popen, read_size: int = 4096):
        self._process = process
        self.read_size = read_size
        self.auth_failed = False
        self.auth_message = ""
        self._closed = False
        self._stderr_thread = threading.Thread(target=self._read_stderr, daemon=True)
        self._stderr_thread.start()

    @property
    def exit_code(self) -> int | None:
        return self._process.poll()

    def _read_stderr(self) -> None:
        if self._process.stderr is None:
            return
        for raw in iter(self._process.stderr.readline, b""):
            text = raw.decode("utf-8", errors="replace").strip()
            if not text:
                continue
            log.warning("Heroku CLI error output", output=text)
            if any(marker in text for marker in AUTH_ERROR_MARKERS):
                self.auth_failed = True
                self.auth_message = text

    def chunks(self) -> Iterator[bytes]:
        stdout = self._process.stdout
        if stdout is None:
            raise StreamInterrupted("heroku logs process has no stdout")

        try:
            while True:
                try:
                    data = os.read(stdout.fileno(), self.read_size)
                except OSError as e:
                    raise StreamInterrupted(f"Reading heroku logs failed: {e}") from e
                if not data:
                    break
                yield data
        finally:
            stdout.close()

        try:
            self._process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            pass
        self._stderr_thread.join(timeout=1)

        if self.auth_failed:
            raise SourceAuthFailed(self.auth_message)
        log.info("heroku logs process ended", exit_code=self.exit_code)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._process.poll() is not None:
            return

        log.info("Stopping heroku logs process")
        self._process.terminate()
        try:
            self._process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            self._process.kill()
            self._process.wait(timeout=5)


class HerokuSource:
    """Heroku Platform API for the reachability check, Heroku CLI for the stream."""

    def __init__(
        self,
        api_key: str,
        api_url: str = HEROKU_API_URL,
        command: list[str] | None = None,
        client: httpx.Client | None = None,
    ):
        """Initialize the source.

        Args:
            api_key: Heroku API token
            api_url: Platform API base URL
            command: Tail command; "{app}" in any argument is replaced by the app name
            client: httpx client, injectable for tests
        """
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.command = command or DEFAULT_COMMAND
        self._client = client or httpx.Client(timeout=10.0)

    def verify_reachable(self, app: str) -> dict:
        try:
            response = self._client.get(
                f"{self.api_url}/apps/{app}",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Accept": "application/vnd.heroku+json; version=3",
                },
            )
        except httpx.RequestError as e:
            raise SourceUnreachable(f"Cannot reach Heroku: {e}", reason="network") from e

        if response.status_code == 401:
            raise SourceAuthFailed("Invalid Heroku API token")
        if response.status_code == 404:
            raise SourceUnreachable(f"Heroku app not found: {app}", reason="not_found")
        if response.is_error:
            raise SourceUnreachable(
                f"Heroku API error {response.status_code}", reason="api"
            )

        data = response.json()
        log.info("Heroku connection verified", app=data.get("name", app))
        return data

    def open_stream(self, app: str) -> HerokuStream:
        args = [part.replace("{app}", app) for part in self.command]
        env = {**os.environ, "HEROKU_API_KEY": self.api_key}
        try:
            process = subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise StreamInterrupted(f"Could not start {args[0]}: {e}") from e

        log.info("Started log tail", app=app, pid=process.pid)
        return HerokuStream(process)
