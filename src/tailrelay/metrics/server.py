"""HTTP endpoint for Prometheus metrics and relay stats."""

import json
import threading
from collections.abc import Callable
from typing import Any
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

import structlog
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

log = structlog.get_logger()

StatsProvider = Callable[[], dict[str, Any]]
StartResponse = Callable[[str, list[tuple[str, str]]], Any]

_server_lock = threading.Lock()
_server: WSGIServer | None = None
_server_thread: threading.Thread | None = None


class _QuietHandler(WSGIRequestHandler):
    """WSGI handler that doesn't log every request."""

    def log_message(self, format: str, *args: object) -> None:
        pass


def make_app(stats_provider: StatsProvider | None = None) -> Callable[..., list[bytes]]:
    """WSGI app serving /metrics, /health and (if a provider is given) /stats."""

    def app(environ: dict[str, Any], start_response: StartResponse) -> list[bytes]:
        path = environ.get("PATH_INFO", "/")

        if path == "/metrics":
            output = generate_latest(REGISTRY)
            status = "200 OK"
            headers = [("Content-Type", CONTENT_TYPE_LATEST)]
        elif path == "/health":
            output = b"ok"
            status = "200 OK"
            headers = [("Content-Type", "text/plain")]
        elif path == "/stats" and stats_provider is not None:
            output = json.dumps(stats_provider(), default=str).encode()
            status = "200 OK"
            headers = [("Content-Type", "application/json")]
        else:
            output = b"Not Found"
            status = "404 Not Found"
            headers = [("Content-Type", "text/plain")]

        start_response(status, headers)
        return [output]

    return app


def start_metrics_server(
    port: int = 9100,
    host: str = "0.0.0.0",
    stats_provider: StatsProvider | None = None,
) -> threading.Thread:
    """Serve metrics from a daemon thread. Idempotent.

    Args:
        port: Port to listen on
        host: Host to bind to
        stats_provider: Returns the relay stats served at /stats

    Returns:
        The daemon thread running the server
    """
    global _server, _server_thread
    with _server_lock:
        if _server_thread is not None and _server_thread.is_alive():
            log.debug("Metrics server already running")
            return _server_thread

        _server = make_server(host, port, make_app(stats_provider), handler_class=_QuietHandler)
        server = _server

        def serve_forever() -> None:
            try:
                log.info("Metrics server listening", host=host, port=port)
                server.serve_forever()
            except Exception:
                log.exception("Metrics server failed unexpectedly")

        _server_thread = threading.Thread(target=serve_forever, daemon=True)
        _server_thread.start()
        return _server_thread


def stop_metrics_server() -> None:
    """Shut the metrics server down if it is running."""
    global _server, _server_thread
    with _server_lock:
        if _server is not None:
            _server.shutdown()
            _server.server_close()
        _server = None
        _server_thread = None
