"""
Collector ingestion endpoint for agent metric updates.

Accepts ``POST /update/{kind}/{name}/{value}``, validates it and logs it.
Nothing is aggregated or persisted; the server only keeps a bounded log
of recent updates.
"""
import threading
from collections import deque
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Deque, List
from urllib.parse import urlsplit

from loguru import logger

from agent.update_requests import UPDATE_PREFIX, MetricUpdate, UpdatePathError, parse_update_path

RECENT_UPDATES_LIMIT = 1000


class CollectorServer(ThreadingHTTPServer):
    """HTTP server that counts and remembers the updates it accepts."""

    daemon_threads = True
    # Room for one pending connection per metric of a full report.
    request_queue_size = 128

    def __init__(self, server_address, handler_class=None):
        super().__init__(server_address, handler_class or UpdateHandler)
        self._updates_lock = threading.Lock()
        self.updates_received = 0
        self.recent_updates: Deque[MetricUpdate] = deque(maxlen=RECENT_UPDATES_LIMIT)

    def record_update(self, update: MetricUpdate) -> None:
        with self._updates_lock:
            self.updates_received += 1
            self.recent_updates.append(update)

    def get_recent_updates(self) -> List[MetricUpdate]:
        with self._updates_lock:
            return list(self.recent_updates)


class UpdateHandler(BaseHTTPRequestHandler):
    """HTTP handler for metric updates."""

    server: CollectorServer
    # Keep-alive lets the agent reuse pooled connections.
    protocol_version = "HTTP/1.1"

    def do_POST(self):
        """Handle POST /update/{kind}/{name}/{value}."""
        try:
            self._drain_body()
        except ValueError as e:
            logger.debug(f"Rejected update with bad body: {e}")
            self._respond(400, "Bad Request", extra_headers={"Connection": "close"})
            return
        path = urlsplit(self.path).path

        try:
            update = parse_update_path(path)
        except UpdatePathError as e:
            logger.debug(f"Rejected update {path}: {e}")
            self._respond(e.status, str(e))
            return

        self.server.record_update(update)
        logger.info(f"Received {update.kind.value} update: {update.name}={update.value}")
        self._respond(200, "OK")

    def do_GET(self):
        self._reject_method()

    def do_PUT(self):
        self._reject_method()

    def do_DELETE(self):
        self._reject_method()

    def _reject_method(self):
        path = urlsplit(self.path).path
        if path.strip("/").split("/")[0] == UPDATE_PREFIX:
            self._respond(405, "Method Not Allowed", extra_headers={"Allow": "POST"})
        else:
            self._respond(404, "Not Found")

    def _drain_body(self):
        raw_length = self.headers.get('Content-Length') or "0"
        try:
            length = int(raw_length)
        except ValueError:
            raise ValueError(f"invalid Content-Length: {raw_length!r}") from None
        if length < 0:
            raise ValueError(f"negative Content-Length: {length}")
        if length > 0:
            self.rfile.read(length)

    def _respond(self, status: int, message: str, extra_headers=None):
        body = message.encode()
        self.send_response(status)
        self.send_header('Content-type', 'text/plain; charset=utf-8')
        self.send_header('Content-Length', str(len(body)))
        for name, value in (extra_headers or {}).items():
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        """Override to use loguru instead of print."""
        logger.debug(f"HTTP: {self.address_string()} - {format % args}")


def create_collector_server(host: str, port: int) -> CollectorServer:
    """Bind a collector server; port 0 picks a free port."""
    server = CollectorServer((host, port))
    logger.info(f"Collector listening on http://{server.server_address[0]}:{server.server_address[1]}")
    logger.info(f"   - Update endpoint: POST /{UPDATE_PREFIX}/{{kind}}/{{name}}/{{value}}")
    return server


def start_collector_server(host: str, port: int) -> None:
    """Serve until interrupted."""
    server = create_collector_server(host, port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal. Shutting down collector...")
    finally:
        server.server_close()
        logger.info(f"Collector stopped after {server.updates_received} updates")
