"""
Health endpoint for the load balancer.

    GET /health  →  200 "OK"
    anything else → 404

The endpoint does not check the database or the queue.
It starts before the worker tries to connect to anything, so a target that
is still waiting for RDS is not marked unhealthy and replaced in a loop.
"""

import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional

HEALTH_PATH = "/health"

logger = logging.getLogger(__name__)


class HealthCheckHandler(BaseHTTPRequestHandler):
    """Answers GET /health; every other request gets a 404."""

    def do_GET(self):
        if self.path == HEALTH_PATH:
            body = b"OK"
            self.send_response(200)
            self.send_header("Content-Type", "text/plain")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)
            return

        self._not_found()

    def _not_found(self):
        self.send_response(404)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def __getattr__(self, name):
        # http.server looks up do_<METHOD>; a missing one would be a 501
        if name.startswith("do_"):
            return self._not_found
        raise AttributeError(name)

    def log_message(self, format, *args):
        # Load balancer probes every few seconds; keep them out of INFO logs
        logger.debug("Health request: " + format, *args)


class HealthServer:
    """
    Threaded HTTP server for the health endpoint.

    Attributes:
        host: Bind address
        port: Bound port (resolved after start() when 0 was requested)
    """

    def __init__(self, host: str = "0.0.0.0", port: int = 8080):
        self.host = host
        self.port = port
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """
        Bind and start serving in a daemon thread.

        The socket is bound before this returns, so the endpoint is
        reachable as soon as start() completes.
        """
        self._server = ThreadingHTTPServer((self.host, self.port), HealthCheckHandler)
        self._server.daemon_threads = True
        self.port = self._server.server_address[1]

        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="HealthServer",
            daemon=True,
        )
        self._thread.start()

        logger.info(f"Health endpoint listening on :{self.port}")

    def stop(self) -> None:
        """Stop serving and close the socket."""
        if self._server is None:
            return

        self._server.shutdown()
        self._server.server_close()
        self._server = None
        if self._thread is not None:
            self._thread.join()
            self._thread = None
