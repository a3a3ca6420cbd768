"""
Admin HTTP server for SproutVault.

This module provides a simple HTTP server using Python's built-in http.server
module. It exposes the backup, restore and pre-migration check operations
to privileged callers.

Security:
    - Binds to localhost only by default
    - Every database route requires a bearer admin token
    - Request bodies larger than the configured limit are refused unread
    - Requests are handled one at a time
"""

from __future__ import annotations

import json
import logging
import socket
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse

from sproutvault.server.routes import RouteContext, RouteResponse, check_authorization, get_route

logger = logging.getLogger(__name__)

# Default host and port
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080


class AdminRequestHandler(BaseHTTPRequestHandler):
    """
    HTTP request handler for the admin API.

    Routes requests to handlers from the routes module.
    """

    # Class-level reference to the route context
    context: RouteContext | None = None

    def log_message(self, format: str, *args: Any) -> None:
        """Log HTTP requests to logger instead of stderr."""
        logger.debug("Admin request: %s", format % args)

    def do_GET(self) -> None:
        """Handle GET requests."""
        self._dispatch("GET")

    def do_POST(self) -> None:
        """Handle POST requests."""
        self._dispatch("POST")

    def _dispatch(self, method: str) -> None:
        parsed = urlparse(self.path)
        query = parse_qs(parsed.query)

        route = get_route(method, parsed.path)
        if route is None or self.context is None:
            self._send_response(
                RouteResponse(
                    status=HTTPStatus.NOT_FOUND,
                    payload={"success": False, "error": "Not found"},
                )
            )
            return

        handler, requires_admin = route
        context = self.context

        if requires_admin:
            denied = check_authorization(context, self.headers.get("Authorization"))
            if denied is not None:
                self._send_response(denied)
                return

        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            length = -1
        if length < 0:
            self._send_response(
                RouteResponse(
                    status=HTTPStatus.BAD_REQUEST,
                    payload={"success": False, "error": "Invalid Content-Length"},
                )
            )
            return
        if length > context.max_upload_bytes:
            self.close_connection = True
            self._send_response(
                RouteResponse(
                    status=HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
                    payload={
                        "success": False,
                        "error": f"Upload exceeds {context.max_upload_bytes:,} bytes",
                    },
                )
            )
            return

        body = self.rfile.read(length) if length else b""

        try:
            response = handler(context, query, body)
        except Exception as e:
            logger.exception("Error in API handler")
            response = RouteResponse(
                status=HTTPStatus.INTERNAL_SERVER_ERROR,
                payload={"success": False, "error": str(e)},
            )

        self._send_response(response)

    def _send_response(self, response: RouteResponse) -> None:
        """Serve a route response."""
        if response.body is not None:
            content = response.body
        else:
            content = json.dumps(response.payload or {}, indent=2, default=str).encode("utf-8")

        self.send_response(response.status)
        self.send_header("Content-Type", response.content_type)
        self.send_header("Content-Length", str(len(content)))
        for name, value in response.headers.items():
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(content)


class AdminServer:
    """
    Admin HTTP server manager.

    Runs the server in a background thread unless started blocking.

    Example:
        server = AdminServer(context, host="127.0.0.1", port=8080)
        server.start()
        print(f"Admin API at {server.get_url()}")
        server.stop()

    Attributes:
        host: Host address to bind to.
        port: Port number to bind to.
    """

    def __init__(
        self,
        context: RouteContext,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
    ) -> None:
        """
        Initialize the admin server.

        Args:
            context: Route context with the services to expose.
            host: Host address to bind to. Defaults to localhost.
            port: Port number to bind to. Defaults to 8080.
        """
        self.context = context
        self.host = host
        self.port = port
        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._running = False

    def start(self, blocking: bool = False) -> bool:
        """
        Start the admin server.

        Args:
            blocking: If True, blocks until server is stopped.

        Returns:
            True if server started successfully, False otherwise.
        """
        if self._running:
            logger.warning("Admin server is already running")
            return True

        handler_class = type(
            "BoundAdminRequestHandler",
            (AdminRequestHandler,),
            {"context": self.context},
        )

        try:
            self._server = HTTPServer((self.host, self.port), handler_class)
        except OSError as e:
            logger.error("Failed to start admin server: %s", e)
            return False

        # Pick up the real port when bound to port 0
        self.port = self._server.server_address[1]
        self._running = True

        logger.info("Admin server starting at %s", self.get_url())

        if blocking:
            self._run_server()
        else:
            self._thread = threading.Thread(target=self._run_server, daemon=True)
            self._thread.start()

        return True

    def _run_server(self) -> None:
        """Run the server loop."""
        if self._server:
            try:
                self._server.serve_forever()
            except Exception as e:
                logger.error("Admin server error: %s", e)
            finally:
                self._running = False

    def stop(self) -> None:
        """Stop the admin server."""
        if self._server is None:
            return

        logger.info("Stopping admin server")

        self._server.shutdown()
        self._server.server_close()
        self._server = None

        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None

        self._running = False

    def is_running(self) -> bool:
        return self._running

    def get_url(self) -> str:
        return f"http://{self.host}:{self.port}"


def find_available_port(start_port: int = DEFAULT_PORT, max_attempts: int = 10) -> int:
    """
    Find an available port starting from the given port.

    Raises:
        RuntimeError: If no available port is found.
    """
    for i in range(max_attempts):
        port = start_port + i
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind((DEFAULT_HOST, port))
                return port
        except OSError:
            continue

    raise RuntimeError(
        f"No available port found in range {start_port}-{start_port + max_attempts - 1}"
    )
