import base64
import json
import logging
import secrets
import urllib.parse
import webbrowser
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from .errors import AuthExchangeFailed, MalformedResponse, error_message_from_body
from .redirect_server import (
    DEFAULT_REDIRECT_TIMEOUT,
    AuthorizationGrant,
    RedirectCapture,
    extract_redirect_params,
    loopback_address,
    parse_redirect_query,
)
from .token_manager import CredentialStore, TokenSet
from .transport import HttpxTransport, TransportResponse

logger = logging.getLogger(__name__)

SPOTIFY_ACCOUNTS_BASE_URL = "https://accounts.spotify.com"

LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "::1")


@dataclass(frozen=True)
class ClientCredentials:
    """Registered application identity; fixed for the life of the process."""

    client_id: str
    client_secret: str
    redirect_uri: str

    def __post_init__(self) -> None:
        if not str(self.client_id or "").strip():
            raise ValueError("client_id is required")
        parsed = urllib.parse.urlparse(str(self.redirect_uri or ""))
        if parsed.scheme != "http" or parsed.hostname not in LOOPBACK_HOSTS:
            raise ValueError(
                f"redirect_uri must be an http:// loopback address, got {self.redirect_uri!r}\n"
                "Recommended default: http://127.0.0.1:8888/callback"
            )
        if parsed.port is None:
            raise ValueError(f"redirect_uri must include a port: {self.redirect_uri!r}")

    def __repr__(self) -> str:
        return f"ClientCredentials(client_id={self.client_id!r}, redirect_uri={self.redirect_uri!r})"


def generate_state() -> str:
    """Unpredictable anti-forgery value for the authorize request."""

    return secrets.token_urlsafe(16).rstrip("=")


def build_authorize_url(
    credentials: ClientCredentials,
    scopes: Iterable[str],
    state: str,
    *,
    show_dialog: bool = False,
    accounts_base_url: str = SPOTIFY_ACCOUNTS_BASE_URL,
) -> str:
    if not state:
        raise ValueError("state is required")

    scope_str = " ".join([str(s).strip() for s in (scopes or []) if str(s).strip()])

    params: Dict[str, str] = {
        "client_id": credentials.client_id,
        "response_type": "code",
        "redirect_uri": credentials.redirect_uri,
        "state": str(state),
    }
    if scope_str:
        params["scope"] = scope_str
    if show_dialog:
        params["show_dialog"] = "true"

    return f"{accounts_base_url}/authorize?{urllib.parse.urlencode(params, quote_via=urllib.parse.quote)}"


def _token_request(
    credentials: ClientCredentials,
    form: Dict[str, Any],
    *,
    transport,
    client_auth: str = "basic",
    accounts_base_url: str = SPOTIFY_ACCOUNTS_BASE_URL,
) -> TransportResponse:
    data = {k: str(v) for k, v in (form or {}).items() if v is not None}
    headers = {"Content-Type": "application/x-www-form-urlencoded", "Accept": "application/json"}

    if client_auth == "basic" and credentials.client_secret:
        raw = f"{credentials.client_id}:{credentials.client_secret}".encode("utf-8")
        headers["Authorization"] = "Basic " + base64.b64encode(raw).decode("ascii")
    else:
        data["client_id"] = credentials.client_id
        if credentials.client_secret:
            data["client_secret"] = credentials.client_secret

    body = urllib.parse.urlencode(data).encode("utf-8")
    return transport.send("POST", f"{accounts_base_url}/api/token", headers=headers, body=body)


def token_set_from_response(resp: TransportResponse, *, now: Optional[float] = None) -> TokenSet:
    """Parse a 2xx token endpoint response; anything unusable is MalformedResponse."""

    try:
        payload = json.loads(resp.body.decode("utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("token response was not an object")
        return TokenSet.from_token_response(payload, now=now)
    except (ValueError, KeyError, TypeError, UnicodeDecodeError) as e:
        raise MalformedResponse(resp.status, f"Unusable token response: {e}") from e


def exchange_code(
    credentials: ClientCredentials,
    grant: AuthorizationGrant,
    *,
    transport,
    now: Optional[float] = None,
    client_auth: str = "basic",
    accounts_base_url: str = SPOTIFY_ACCOUNTS_BASE_URL,
) -> TokenSet:
    """Trade an authorization code for a TokenSet."""

    resp = _token_request(
        credentials,
        {
            "grant_type": "authorization_code",
            "code": grant.code,
            "redirect_uri": credentials.redirect_uri,
        },
        transport=transport,
        client_auth=client_auth,
        accounts_base_url=accounts_base_url,
    )
    if not 200 <= resp.status < 300:
        raise AuthExchangeFailed(resp.status, error_message_from_body(resp.body, resp.status))

    return token_set_from_response(resp, now=now)


def request_refresh(
    credentials: ClientCredentials,
    refresh_token: str,
    *,
    transport,
    client_auth: str = "basic",
    accounts_base_url: str = SPOTIFY_ACCOUNTS_BASE_URL,
) -> TransportResponse:
    """POST the refresh_token grant and return the raw response for classification."""

    return _token_request(
        credentials,
        {"grant_type": "refresh_token", "refresh_token": refresh_token},
        transport=transport,
        client_auth=client_auth,
        accounts_base_url=accounts_base_url,
    )


class SpotifyAuth:
    """Spotify OAuth (Authorization Code) helper bound to one credential store."""

    def __init__(
        self,
        credentials: ClientCredentials,
        *,
        store: Optional[CredentialStore] = None,
        transport=None,
        client_auth: str = "basic",
        redirect_timeout: float = DEFAULT_REDIRECT_TIMEOUT,
        open_browser: bool = True,
        accounts_base_url: str = SPOTIFY_ACCOUNTS_BASE_URL,
    ):
        if client_auth not in ("basic", "body"):
            raise ValueError(f"client_auth must be 'basic' or 'body', got {client_auth!r}")
        self.credentials = credentials
        self.store = store or CredentialStore()
        self.transport = transport or HttpxTransport()
        self.client_auth = client_auth
        self.redirect_timeout = float(redirect_timeout)
        self.open_browser = bool(open_browser)
        self.accounts_base_url = accounts_base_url

    def authorize_url(self, scopes: Iterable[str], state: str, *, show_dialog: bool = False) -> str:
        return build_authorize_url(
            self.credentials, scopes, state, show_dialog=show_dialog, accounts_base_url=self.accounts_base_url
        )

    def authorize(
        self,
        scopes: Iterable[str],
        *,
        open_browser: Optional[bool] = None,
        show_dialog: bool = False,
        timeout: Optional[float] = None,
    ) -> TokenSet:
        """Run the full browser flow and install the resulting tokens.

        The loopback listener is bound before the browser is opened so the
        redirect cannot arrive ahead of it.
        """

        state = generate_state()
        url = self.authorize_url(scopes, state, show_dialog=show_dialog)
        address, callback_path = loopback_address(self.credentials.redirect_uri)

        capture = RedirectCapture(
            address,
            state,
            callback_path=callback_path,
            timeout=self.redirect_timeout if timeout is None else timeout,
        )
        with capture:
            if open_browser is None:
                open_browser = self.open_browser
            if open_browser and webbrowser.open(url):
                logger.info("Opened Spotify authorization page in the browser")
            else:
                logger.info("Open this URL to authorize the application: %s", url)
            grant = capture.wait()

        return self.complete(grant)

    def complete(self, grant: AuthorizationGrant) -> TokenSet:
        token = exchange_code(
            self.credentials,
            grant,
            transport=self.transport,
            client_auth=self.client_auth,
            accounts_base_url=self.accounts_base_url,
        )
        self.store.install(token)
        logger.info("Spotify authorization complete (scopes: %s)", " ".join(sorted(token.scopes)) or "-")
        return token

    def complete_from_redirect_url(self, redirect_url: str, expected_state: str) -> TokenSet:
        """Finish the flow from a redirect URL copied out of the browser."""

        grant = parse_redirect_query(extract_redirect_params(redirect_url), expected_state)
        return self.complete(grant)

    def request_refresh(self, refresh_token: str) -> TransportResponse:
        return request_refresh(
            self.credentials,
            refresh_token,
            transport=self.transport,
            client_auth=self.client_auth,
            accounts_base_url=self.accounts_base_url,
        )
