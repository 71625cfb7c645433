"""The HTTP front end: health check and configuration endpoints."""

from __future__ import annotations

import logging
import os
import socket
import sys
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import TextIO
from urllib.parse import urlsplit

from .config import Config
from .config_service import handle_get_config, handle_post_config
from .misc import go_with_recovery

logger = logging.getLogger(__name__)

_JSON = "application/json; charset=utf-8"
_TEXT = "text/plain"
_HEALTH_BODY = b'{"health":true}'


class _Server(ThreadingHTTPServer):
    daemon_threads = True
    access_log: TextIO
    access_log_lock: threading.Lock


class _Server6(_Server):
    address_family = socket.AF_INET6


class _Handler(BaseHTTPRequestHandler):
    server: _Server
    server_version = "ngmonitor"

    def _send(self, status: int, body: bytes, content_type: str = _JSON) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _not_found(self) -> None:
        self._send(404, b"404 page not found", _TEXT)

    def _dispatch(self, route) -> None:
        try:
            route()
        except Exception:  # noqa: BLE001 - a failing handler answers 500
            logger.exception("panic while handling %s %s", self.command, self.path)
            self._send(500, b"", _TEXT)

    def do_GET(self) -> None:  # noqa: N802 - required name
        self._dispatch(self._route_get)

    def do_POST(self) -> None:  # noqa: N802 - required name
        self._dispatch(self._route_post)

    def _route_get(self) -> None:
        path = urlsplit(self.path).path
        if path == "/health":
            self._send(200, _HEALTH_BODY)
        elif path in ("/config", "/config/"):
            self._send(*handle_get_config())
        else:
            self._not_found()

    def _route_post(self) -> None:
        path = urlsplit(self.path).path
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length) if length > 0 else b""
        if path in ("/config", "/config/"):
            self._send(*handle_post_config(body))
        else:
            self._not_found()

    def log_message(self, format: str, *args) -> None:  # noqa: A002 - inherited signature
        line = f"[HTTP] {self.log_date_time_string()} | {self.address_string()} | {format % args}\n"
        with self.server.access_log_lock:
            self.server.access_log.write(line)
            self.server.access_log.flush()


def _split_address(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {address}")
    return host.strip("[]"), int(port)


class HTTPService:
    """Serves the HTTP API on ``config.address`` in a background thread."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self._server: _Server | None = None
        self._thread: threading.Thread | None = None
        self._log_stream: TextIO | None = None

    def start(self) -> None:
        """Bind the listener and start serving; raises OSError if binding fails."""
        if self._server is not None:
            raise RuntimeError("http service already started")
        host, port = _split_address(self.config.address)
        if self.config.log.path:
            stream: TextIO = open(
                os.path.join(self.config.log.path, "service.log"), "a", encoding="utf-8"
            )
        else:
            stream = sys.stdout
        server_cls = _Server6 if ":" in host else _Server
        try:
            server = server_cls((host, port), _Handler)
        except OSError as exc:
            logger.error("failed to listen, address=%s: %s", self.config.address, exc)
            if stream is not sys.stdout:
                stream.close()
            raise
        server.access_log = stream
        server.access_log_lock = threading.Lock()
        thread = threading.Thread(
            target=go_with_recovery, args=(server.serve_forever,), name="http-service", daemon=True
        )
        thread.start()
        self._server, self._thread, self._log_stream = server, thread, stream
        logger.info("starting http service, address=%s", self.config.address)

    def address(self) -> str:
        """Return the bound ``host:port``."""
        if self._server is None:
            raise RuntimeError("http service is not running")
        host, port = self._server.server_address[:2]
        if ":" in str(host):
            return f"[{host}]:{port}"
        return f"{host}:{port}"

    def stop(self) -> None:
        """Shut the server down; does nothing if it is not running."""
        if self._server is None:
            return
        logger.info("shutting down http server")
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join()
        if self._log_stream is not None and self._log_stream is not sys.stdout:
            self._log_stream.close()
        self._server = self._thread = self._log_stream = None
        logger.info("http server is down")