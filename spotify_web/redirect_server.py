"""Single-shot loopback listener for the OAuth authorization redirect.

The capture binds before the browser is sent to the consent page, accepts
requests until one hits the callback path, answers it with a small page, and
closes the socket on every way out of ``wait()``.
"""

import html
import logging
import socket
import threading
import time
import urllib.parse
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Callable, Mapping, Optional, Tuple, Union

from .errors import (
    AuthorizationCancelled,
    AuthorizationDenied,
    AuthorizationError,
    AuthorizationTimeout,
    StateMismatch,
)

logger = logging.getLogger(__name__)

DEFAULT_CALLBACK_PATH = "/callback"
DEFAULT_REDIRECT_TIMEOUT = 300.0

# Upper bound on a single handle_request() wait so cancel() is noticed promptly.
_POLL_INTERVAL = 0.25

# Upper bound on how long one accepted connection may sit without sending its request.
_CONNECTION_TIMEOUT = 1.0

_PAGE = """<!DOCTYPE html>
<html lang="en">
  <head><meta charset="utf-8"><title>{title}</title></head>
  <body>
    <h1>{title}</h1>
    <p>{message}</p>
    <p>You can close this window and return to the application.</p>
  </body>
</html>"""


@dataclass(frozen=True)
class AuthorizationGrant:
    """Authorization code captured from the redirect; consumed by one token exchange."""

    code: str
    state: str

    def __repr__(self) -> str:
        return f"AuthorizationGrant(state={self.state!r})"


def parse_redirect_query(query: Mapping[str, str], expected_state: str) -> AuthorizationGrant:
    """Interpret redirect parameters; returns the grant or raises."""

    state = query.get("state")
    if state is None or state != expected_state:
        raise StateMismatch(expected_state, state)

    error = query.get("error")
    if error:
        raise AuthorizationDenied(error, query.get("error_description"))

    code = query.get("code")
    if not code:
        raise AuthorizationDenied("missing_code", "redirect carried neither a code nor an error")

    return AuthorizationGrant(code=code, state=state)


def extract_redirect_params(redirect_url: str) -> dict:
    """Parse a redirect URL into ``{"code", "state", "error", ...}`` (missing keys omitted)."""

    parsed = urllib.parse.urlparse(str(redirect_url or "").strip())
    return {k: v[0] for k, v in urllib.parse.parse_qs(parsed.query).items() if v}


class _CallbackHandler(BaseHTTPRequestHandler):
    server: "_CallbackServer"

    def setup(self) -> None:
        # Idle connections (browser preconnects) must not hold up the wait loop.
        self.timeout = self.server.connection_timeout
        super().setup()

    def do_GET(self) -> None:
        parsed = urllib.parse.urlparse(self.path)
        if parsed.path != self.server.callback_path or self.server.outcome is not None:
            self._respond(404, "Not found", "This address only accepts the authorization redirect.")
            return

        query = {k: v[0] for k, v in urllib.parse.parse_qs(parsed.query).items() if v}
        try:
            outcome = parse_redirect_query(query, self.server.expected_state)
        except AuthorizationError as e:
            outcome = e

        self.server.outcome = outcome
        if isinstance(outcome, AuthorizationError):
            self._respond(400, "Authorization failed", str(outcome))
        else:
            self._respond(200, "Authorization complete", "The application has received your authorization.")

    def _respond(self, status: int, title: str, message: str) -> None:
        page = _PAGE.format(title=html.escape(title), message=html.escape(message)).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(page)))
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(page)

    def log_message(self, format: str, *args) -> None:
        logger.debug("redirect listener: " + format, *args)


class _CallbackServer(HTTPServer):
    allow_reuse_address = True

    def __init__(self, address: Tuple[str, int], callback_path: str, expected_state: str):
        self.callback_path = callback_path
        self.expected_state = expected_state
        self.outcome: Union[AuthorizationGrant, AuthorizationError, None] = None
        self.connection_timeout = _CONNECTION_TIMEOUT
        if ":" in address[0]:
            self.address_family = socket.AF_INET6
        super().__init__(address, _CallbackHandler)


class RedirectCapture:
    """Bound listener waiting for exactly one authorization redirect.

    Use as a context manager: entering binds, ``wait()`` blocks for the
    redirect, leaving closes the socket. ``wait()`` closes it too, so the
    listener never outlives the wait. A capture is single-use.
    """

    def __init__(
        self,
        address: Tuple[str, int],
        expected_state: str,
        *,
        callback_path: str = DEFAULT_CALLBACK_PATH,
        timeout: float = DEFAULT_REDIRECT_TIMEOUT,
    ):
        self.address = address
        self.expected_state = expected_state
        self.callback_path = callback_path or "/"
        self.timeout = float(timeout)
        self._server: Optional[_CallbackServer] = None
        self._cancelled = threading.Event()
        self._waiting = threading.Lock()
        self._used = False

    @property
    def port(self) -> int:
        if self._server is None:
            raise RuntimeError("Redirect capture is not bound")
        return int(self._server.server_address[1])

    def bind(self) -> "RedirectCapture":
        if self._used:
            raise RuntimeError("Redirect capture is single-use")
        if self._server is None:
            self._server = _CallbackServer(self.address, self.callback_path, self.expected_state)
            logger.debug("Listening for authorization redirect on port %s%s", self.port, self.callback_path)
        return self

    def cancel(self) -> None:
        """Abort a pending ``wait()`` from another thread."""

        self._cancelled.set()

    def wait(self) -> AuthorizationGrant:
        if not self._waiting.acquire(blocking=False):
            raise RuntimeError("Redirect capture is already listening")
        try:
            self.bind()
            self._used = True
            return self._serve_until_redirect()
        finally:
            self.close()
            self._waiting.release()

    def _serve_until_redirect(self) -> AuthorizationGrant:
        server = self._server
        assert server is not None

        deadline = time.monotonic() + self.timeout
        while server.outcome is None:
            if self._cancelled.is_set():
                raise AuthorizationCancelled("Authorization wait was cancelled")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise AuthorizationTimeout(self.timeout)
            server.timeout = min(remaining, _POLL_INTERVAL)
            server.connection_timeout = min(remaining, _CONNECTION_TIMEOUT)
            server.handle_request()

        if isinstance(server.outcome, AuthorizationError):
            raise server.outcome
        return server.outcome

    def close(self) -> None:
        if self._server is not None:
            self._server.server_close()
            self._server = None

    def __enter__(self) -> "RedirectCapture":
        return self.bind()

    def __exit__(self, *exc) -> None:
        self.close()


def await_redirect(
    address: Tuple[str, int],
    expected_state: str,
    *,
    callback_path: str = DEFAULT_CALLBACK_PATH,
    timeout: float = DEFAULT_REDIRECT_TIMEOUT,
    on_listening: Optional[Callable[[int], None]] = None,
) -> AuthorizationGrant:
    """Block until the authorization redirect arrives and return its grant.

    ``on_listening`` is called with the bound port once the socket accepts
    connections, which is when the browser should be sent to the consent page.
    """

    with RedirectCapture(address, expected_state, callback_path=callback_path, timeout=timeout) as capture:
        if on_listening is not None:
            on_listening(capture.port)
        return capture.wait()


def loopback_address(redirect_uri: str) -> Tuple[Tuple[str, int], str]:
    """Split a loopback redirect URI into ``((host, port), callback_path)``."""

    parsed = urllib.parse.urlparse(redirect_uri)
    if parsed.port is None:
        raise ValueError(f"Redirect URI must carry an explicit port: {redirect_uri}")
    return (parsed.hostname or "127.0.0.1", parsed.port), (parsed.path or "/")
