"""Spotify Web API client (OAuth Authorization Code flow).

Authorize once with ``SpotifyAuth.authorize()`` (loopback redirect capture),
then issue typed calls through ``SpotifyClient``; access tokens are renewed
transparently from the refresh token.
"""

from .auth import ClientCredentials, SpotifyAuth, build_authorize_url, exchange_code, generate_state
from .client import SpotifyClient
from .data_loader import SpotifyDataLoader
from .errors import (
    ApiError,
    AuthExchangeFailed,
    AuthorizationCancelled,
    AuthorizationDenied,
    AuthorizationError,
    AuthorizationTimeout,
    BadRequest,
    ErrorKind,
    Forbidden,
    InsufficientScope,
    InvalidSpotifyId,
    MalformedResponse,
    NetworkError,
    NotFound,
    RateLimited,
    ReauthorizationRequired,
    RemoteFault,
    SpotifyError,
    StateMismatch,
    Unauthorized,
    UnsupportedVariant,
)
from .models import UNIT, Album, Artist, Page, PlaybackState, Playlist, PlaylistItem, SavedTrack, Track, User
from .redirect_server import AuthorizationGrant, RedirectCapture, await_redirect
from .token_manager import CredentialStore, TokenCache, TokenSet
from .token_refresh import TokenRefresher
from .transport import HttpxTransport, TransportResponse

__all__ = [
    "ClientCredentials",
    "SpotifyAuth",
    "build_authorize_url",
    "exchange_code",
    "generate_state",
    "SpotifyClient",
    "SpotifyDataLoader",
    "ApiError",
    "AuthExchangeFailed",
    "AuthorizationCancelled",
    "AuthorizationDenied",
    "AuthorizationError",
    "AuthorizationTimeout",
    "BadRequest",
    "ErrorKind",
    "Forbidden",
    "InsufficientScope",
    "InvalidSpotifyId",
    "MalformedResponse",
    "NetworkError",
    "NotFound",
    "RateLimited",
    "ReauthorizationRequired",
    "RemoteFault",
    "SpotifyError",
    "StateMismatch",
    "Unauthorized",
    "UnsupportedVariant",
    "UNIT",
    "Album",
    "Artist",
    "Page",
    "PlaybackState",
    "Playlist",
    "PlaylistItem",
    "SavedTrack",
    "Track",
    "User",
    "AuthorizationGrant",
    "RedirectCapture",
    "await_redirect",
    "CredentialStore",
    "TokenCache",
    "TokenSet",
    "TokenRefresher",
    "HttpxTransport",
    "TransportResponse",
]
