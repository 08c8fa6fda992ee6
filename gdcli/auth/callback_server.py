"""
callback_server.py

Local HTTP listener that catches the OAuth2 redirect for one authorization
session. Binds an OS-assigned ephemeral port on the loopback interface,
serves exactly one request on the callback path, and is always closed on
exit from its `with` block.
Part of gdcli - Google Drive command-line client.
"""

from __future__ import annotations

import logging
import socketserver
import time
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import parse_qs, urlparse

from gdcli import config
from gdcli.auth.errors import AuthorizationError, AuthorizationTimeout

_log = logging.getLogger("gdcli.auth.callback")

# Upper bound on one handle_request() wait so timeouts and signals are noticed.
POLL_INTERVAL_SECONDS = 0.5

_SUCCESS_PAGE = (
    b"<html><head><title>gdcli</title></head>"
    b"<body style='font-family: sans-serif; text-align: center; padding: 50px;'>"
    b"<h1>Authorization received</h1>"
    b"<p>You can close this window and return to the terminal.</p>"
    b"</body></html>"
)

_DENIED_PAGE = (
    b"<html><head><title>gdcli</title></head>"
    b"<body style='font-family: sans-serif; text-align: center; padding: 50px;'>"
    b"<h1>Authorization was not granted</h1>"
    b"<p>Return to the terminal for details.</p>"
    b"</body></html>"
)


def query_params(query: str) -> dict[str, str]:
    """Flatten a query string to its first value per key."""
    return {key: values[0] for key, values in parse_qs(query, keep_blank_values=True).items()}


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackHTTPServer
    # Socket timeout for a connected client that never sends a request.
    timeout = 5

    def log_message(self, format, *args):
        _log.debug("callback %s - %s", self.address_string(), format % args)

    def _reply(self, status: int, body: bytes, content_type: str = "text/plain") -> None:
        self.send_response(status)
        self.send_header("Content-Type", f"{content_type}; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self):
        url = urlparse(self.path)
        if url.path != self.server.callback_path:
            self._reply(404, b"Not found")
            return

        params = query_params(url.query)
        self.server.captured = params
        if "error" in params:
            self._reply(200, _DENIED_PAGE, "text/html")
        else:
            self._reply(200, _SUCCESS_PAGE, "text/html")


class _CallbackHTTPServer(HTTPServer):
    callback_path: str = config.CALLBACK_PATH
    captured: dict[str, str] | None = None

    def server_bind(self):
        # Skip HTTPServer.server_bind, whose getfqdn() lookup can stall on DNS.
        socketserver.TCPServer.server_bind(self)
        host, port = self.server_address[:2]
        self.server_name = host
        self.server_port = port


class LoopbackListener:
    """
    One-shot redirect listener.

    Port 0 is bound so the OS assigns a free ephemeral port; the chosen
    port is read back into `redirect_uri`. Concurrent invocations therefore
    never collide.

    Example:
        with LoopbackListener() as listener:
            url = build_url(redirect_uri=listener.redirect_uri)
            params = listener.wait_for_redirect(timeout=120)
    """

    def __init__(
        self,
        host: str = config.LOOPBACK_HOST,
        callback_path: str = config.CALLBACK_PATH,
    ) -> None:
        self._host = host
        self._callback_path = callback_path
        self._server: _CallbackHTTPServer | None = None

    def __enter__(self) -> LoopbackListener:
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        """Bind the listener socket."""
        try:
            server = _CallbackHTTPServer((self._host, 0), _CallbackHandler)
        except OSError as exc:
            raise AuthorizationError(
                f"Could not start the loopback listener on {self._host}: {exc}. "
                "Use --manual instead."
            ) from exc
        server.callback_path = self._callback_path
        server.captured = None
        self._server = server
        _log.info("Loopback listener bound on %s", self.redirect_uri)

    def close(self) -> None:
        """Release the socket. Safe to call more than once."""
        if self._server is None:
            return
        self._server.server_close()
        self._server = None
        _log.info("Loopback listener closed")

    @property
    def is_open(self) -> bool:
        return self._server is not None

    @property
    def port(self) -> int:
        if self._server is None:
            raise RuntimeError("Loopback listener is not open")
        return self._server.server_address[1]

    @property
    def redirect_uri(self) -> str:
        return f"http://{self._host}:{self.port}{self._callback_path}"

    def wait_for_redirect(self, timeout: float = config.AUTH_TIMEOUT_SECONDS) -> dict[str, str]:
        """
        Block until one request hits the callback path.

        Requests for other paths are answered with 404 and do not count.

        Args:
            timeout: Maximum seconds to wait.

        Returns:
            The query parameters of the redirect (first value per key).

        Raises:
            AuthorizationTimeout: If no redirect arrives within `timeout`.
        """
        if self._server is None:
            raise RuntimeError("Loopback listener is not open")

        deadline = time.monotonic() + timeout
        while self._server.captured is None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                _log.warning("No redirect received within %.0fs", timeout)
                raise AuthorizationTimeout(timeout)
            self._server.timeout = min(remaining, POLL_INTERVAL_SECONDS)
            self._server.handle_request()

        _log.info("Redirect received on loopback listener")
        return dict(self._server.captured)
