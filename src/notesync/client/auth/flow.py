"""Interactive authorization surfaces.

The token manager does not open windows itself. It is given an
AuthorizationFlow that takes the provider's authorization URL and
returns the callback URL the provider redirected to, or None when the
user abandoned the consent step.
"""

from __future__ import annotations

import logging
import time
import webbrowser
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Protocol
from urllib.parse import urlsplit

import click

logger = logging.getLogger(__name__)

DEFAULT_LOOPBACK_TIMEOUT = 300.0  # seconds

_DONE_PAGE = (
    b"<html><body><h3>Authorization complete.</h3>"
    b"<p>You can close this window and return to notesync.</p></body></html>"
)


class AuthorizationFlow(Protocol):
    """Drives the user through the provider consent page."""

    def run(self, authorize_url: str, redirect_uri: str, fresh_session: bool = False) -> str | None:
        """Return the full callback URL, or None if the user gave up."""
        ...


class _CallbackHandler(BaseHTTPRequestHandler):
    """Captures the first request whose path matches the redirect path."""

    server: _CallbackServer

    def do_GET(self) -> None:  # noqa: N802 - http.server naming
        if urlsplit(self.path).path != self.server.expected_path:
            self.send_response(404)
            self.end_headers()
            return
        self.server.callback_path = self.path
        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.end_headers()
        self.wfile.write(_DONE_PAGE)

    def log_message(self, format: str, *args: object) -> None:
        logger.debug(f"Loopback callback: {format % args}")


class _CallbackServer(HTTPServer):
    expected_path: str
    callback_path: str | None = None


class LoopbackAuthorizationFlow:
    """Opens the system browser and listens on the loopback redirect URI.

    The redirect URI must be an ``http://localhost:<port>/...`` address
    registered with the provider.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_LOOPBACK_TIMEOUT,
        open_browser: bool = True,
    ) -> None:
        self.timeout = timeout
        self.open_browser = open_browser

    def run(self, authorize_url: str, redirect_uri: str, fresh_session: bool = False) -> str | None:
        parts = urlsplit(redirect_uri)
        host = parts.hostname or "localhost"
        port = parts.port or 80
        server = _CallbackServer((host, port), _CallbackHandler)
        server.expected_path = parts.path or "/"
        server.timeout = 1.0

        if fresh_session:
            logger.debug("Fresh session requested; relying on provider force-login parameters")

        try:
            if self.open_browser:
                webbrowser.open(authorize_url)
            else:
                click.echo(f"Open this URL to authorize:\n{authorize_url}")
            deadline = time.monotonic() + self.timeout
            while server.callback_path is None and time.monotonic() < deadline:
                server.handle_request()
        finally:
            server.server_close()

        if server.callback_path is None:
            logger.warning(f"No authorization callback received within {self.timeout:.0f}s")
            return None
        return f"{parts.scheme}://{parts.netloc}{server.callback_path}"


class ConsoleAuthorizationFlow:
    """Prints the authorization URL and asks the user to paste the final URL.

    Useful on headless machines where no loopback listener can be reached.
    """

    def run(self, authorize_url: str, redirect_uri: str, fresh_session: bool = False) -> str | None:
        click.echo("Open this URL in a browser and sign in:")
        click.echo(authorize_url)
        click.echo(f"After consenting you will be redirected to {redirect_uri}...")
        pasted = click.prompt(
            "Paste the full redirect URL (empty to cancel)",
            default="",
            show_default=False,
        ).strip()
        if not pasted:
            return None
        if not pasted.startswith(redirect_uri.split("?")[0]):
            logger.warning("Pasted URL does not match the registered redirect URI")
            return None
        return pasted
