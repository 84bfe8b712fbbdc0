import json
import logging
import urllib.parse
from typing import Any, Callable, Dict, Iterable, List, Optional

from .auth import SpotifyAuth
from .config import apply_defaults, credentials_from_config
from .errors import MalformedResponse, api_error_from_response
from .ids import parse_spotify_id, spotify_uri
from .models import (
    UNIT,
    Album,
    Artist,
    Page,
    PlaybackState,
    Playlist,
    PlaylistItem,
    SavedTrack,
    Track,
    User,
    list_of,
)
from .token_manager import CredentialStore, TokenCache, TokenSet
from .token_refresh import TokenRefresher
from .transport import HttpxTransport, TransportResponse

logger = logging.getLogger(__name__)

SPOTIFY_API_BASE_URL = "https://api.spotify.com/v1"

# Limits the API enforces per request.
MAX_IDS_PER_REQUEST = 50
MAX_PAGE_LIMIT = 50
MAX_PLAYLIST_PAGE_LIMIT = 100

_PLAYBACK_CONTROL = ("user-modify-playback-state",)


def _bool_list(payload: Any) -> List[bool]:
    if not isinstance(payload, list) or not all(isinstance(v, bool) for v in payload):
        raise TypeError("expected a list of booleans")
    return list(payload)


class SpotifyClient:
    """Spotify Web API client over an authenticated request pipeline.

    Every call runs the same steps: make sure the access token is usable
    (refreshing once if needed), send with a bearer header, then turn the
    response into either the requested shape, ``UNIT`` for an empty 2xx, or an
    ``ApiError``. Retries and sleeping on 429 are left to the caller; the
    only automatic resend is a single one after a 401 triggers a refresh.

    Safe to share between threads.
    """

    def __init__(self, auth: SpotifyAuth, *, api_base_url: str = SPOTIFY_API_BASE_URL):
        self.auth = auth
        self.store = auth.store
        self.transport = auth.transport
        self.refresher = TokenRefresher(auth)
        self.api_base_url = api_base_url.rstrip("/")
        self._api_origin = urllib.parse.urlparse(self.api_base_url)

    @classmethod
    def from_config(cls, config: Dict[str, Any], *, transport=None) -> "SpotifyClient":
        """Wire credentials, store, transport and auth from a config dict (see config.py)."""

        config = apply_defaults(config)
        credentials = credentials_from_config(config)

        store_kwargs = {"safety_margin": float(config["spotify_token_margin_seconds"])}
        if config["spotify_cache_tokens"]:
            store = CredentialStore.from_cache(TokenCache(cache_path=config["spotify_token_cache_path"]), **store_kwargs)
        else:
            store = CredentialStore(**store_kwargs)

        auth = SpotifyAuth(
            credentials,
            store=store,
            transport=transport or HttpxTransport(timeout=float(config["spotify_request_timeout"])),
            client_auth=config["spotify_client_auth"],
            redirect_timeout=float(config["spotify_redirect_timeout"]),
            open_browser=bool(config["spotify_open_browser"]),
        )
        return cls(auth)

    # -----------------
    # Pipeline
    # -----------------

    def call(
        self,
        method: str,
        path: str,
        *,
        query: Optional[Dict[str, Any]] = None,
        body: Any = None,
        shape: Optional[Callable[[Any], Any]] = None,
        scopes: Iterable[str] = (),
    ) -> Any:
        """Make an authenticated request and return the parsed payload.

        ``path`` is relative to the API base URL or an absolute URL taken from a
        paging object, which is used as-is but must point at the API host.
        ``shape`` converts the decoded JSON; without it the JSON is returned
        unchanged. ``scopes`` are checked against the token about to be sent.
        """

        url = self._url(path, query)
        token = self.refresher.ensure_valid()
        token.require_scopes(*scopes)
        resp = self._send(method, url, token, body)

        if resp.status == 401:
            logger.info("Access token rejected by Spotify; refreshing once and resending")
            token = self.refresher.force_refresh(token.access_token)
            resp = self._send(method, url, token, body)

        return self._decode(resp, shape)

    def _url(self, path: str, query: Optional[Dict[str, Any]]) -> str:
        if path.startswith(("http://", "https://")):
            target = urllib.parse.urlparse(path)
            if (target.scheme, target.netloc) != (self._api_origin.scheme, self._api_origin.netloc):
                raise ValueError(f"Refusing to send credentials outside {self.api_base_url}: {path}")
            url = path
        else:
            url = f"{self.api_base_url}/{path.lstrip('/')}"
        if query:
            params = {k: str(v).lower() if isinstance(v, bool) else str(v) for k, v in query.items() if v is not None}
            if params:
                sep = "&" if urllib.parse.urlparse(url).query else "?"
                url = f"{url}{sep}{urllib.parse.urlencode(params)}"
        return url

    def _send(self, method: str, url: str, token: TokenSet, body: Any) -> TransportResponse:
        headers = {
            "Authorization": f"Bearer {token.access_token}",
            "Accept": "application/json",
        }
        data = None
        if body is not None:
            headers["Content-Type"] = "application/json"
            data = json.dumps(body).encode("utf-8")

        logger.debug("%s %s", method.upper(), url)
        return self.transport.send(method.upper(), url, headers=headers, body=data)

    def _decode(self, resp: TransportResponse, shape: Optional[Callable[[Any], Any]]) -> Any:
        status = resp.status

        if not 200 <= status < 300:
            error = api_error_from_response(status, resp.headers, resp.body)
            if status == 429:
                logger.warning("Spotify rate limit hit; retry after %s", error.retry_after)
            raise error

        if not resp.body or not resp.body.strip():
            return UNIT

        try:
            payload = json.loads(resp.body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedResponse(status, f"Response was not JSON: {e}") from e

        if shape is None:
            return payload

        try:
            return shape(payload)
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponse(status, f"Unexpected response shape: {type(e).__name__}: {e}") from e

    # -----------------
    # Pagination
    # -----------------

    def next_page(self, page: Page) -> Optional[Page]:
        return self._follow(page, page.next)

    def previous_page(self, page: Page) -> Optional[Page]:
        return self._follow(page, page.previous)

    def _follow(self, page: Page, url: Optional[str]) -> Optional[Page]:
        if not url:
            return None
        if page.item_parser is None:
            raise ValueError("Page was not produced by this client; cannot follow its cursor")
        return self.call("GET", url, shape=Page.of(page.item_parser))

    # -----------------
    # Users
    # -----------------

    def me(self) -> User:
        return self.call("GET", "/me", shape=User.from_json)

    def get_user(self, user_id: str) -> User:
        return self.call("GET", f"/users/{urllib.parse.quote(str(user_id), safe='')}", shape=User.from_json)

    # -----------------
    # Tracks
    # -----------------

    def get_track(self, track_id: str, *, market: Optional[str] = None) -> Track:
        track_id = parse_spotify_id(track_id, "track")
        return self.call("GET", f"/tracks/{track_id}", query={"market": market}, shape=Track.from_json)

    def get_several_tracks(self, track_ids: Iterable[str], *, market: Optional[str] = None) -> List[Optional[Track]]:
        """Unknown IDs come back as None in their position."""

        ids = self._ids(track_ids, "track")
        return self.call(
            "GET",
            "/tracks",
            query={"ids": ",".join(ids), "market": market},
            shape=list_of("tracks", Track.from_json, nullable=True),
        )

    def get_saved_tracks(self, *, limit: int = 20, offset: int = 0, market: Optional[str] = None) -> Page[SavedTrack]:
        return self.call(
            "GET",
            "/me/tracks",
            query={"limit": min(MAX_PAGE_LIMIT, int(limit)), "offset": int(offset), "market": market},
            shape=Page.of(SavedTrack.from_json),
            scopes=("user-library-read",),
        )

    def save_tracks(self, track_ids: Iterable[str]) -> None:
        self.call("PUT", "/me/tracks", body={"ids": self._ids(track_ids, "track")}, scopes=("user-library-modify",))

    def remove_tracks(self, track_ids: Iterable[str]) -> None:
        self.call("DELETE", "/me/tracks", body={"ids": self._ids(track_ids, "track")}, scopes=("user-library-modify",))

    def check_saved_tracks(self, track_ids: Iterable[str]) -> List[bool]:
        ids = self._ids(track_ids, "track")
        return self.call(
            "GET",
            "/me/tracks/contains",
            query={"ids": ",".join(ids)},
            shape=_bool_list,
            scopes=("user-library-read",),
        )

    # -----------------
    # Albums / artists
    # -----------------

    def get_album(self, album_id: str, *, market: Optional[str] = None) -> Album:
        album_id = parse_spotify_id(album_id, "album")
        return self.call("GET", f"/albums/{album_id}", query={"market": market}, shape=Album.from_json)

    def get_album_tracks(
        self, album_id: str, *, limit: int = 20, offset: int = 0, market: Optional[str] = None
    ) -> Page[Track]:
        album_id = parse_spotify_id(album_id, "album")
        return self.call(
            "GET",
            f"/albums/{album_id}/tracks",
            query={"limit": min(MAX_PAGE_LIMIT, int(limit)), "offset": int(offset), "market": market},
            shape=Page.of(Track.from_json),
        )

    def get_artist(self, artist_id: str) -> Artist:
        artist_id = parse_spotify_id(artist_id, "artist")
        return self.call("GET", f"/artists/{artist_id}", shape=Artist.from_json)

    def get_artist_top_tracks(self, artist_id: str, *, market: Optional[str] = None) -> List[Track]:
        artist_id = parse_spotify_id(artist_id, "artist")
        return self.call(
            "GET",
            f"/artists/{artist_id}/top-tracks",
            query={"market": market},
            shape=list_of("tracks", Track.from_json),
        )

    # -----------------
    # Playlists
    # -----------------

    def get_playlist(self, playlist_id: str, *, market: Optional[str] = None) -> Playlist:
        playlist_id = parse_spotify_id(playlist_id, "playlist")
        return self.call("GET", f"/playlists/{playlist_id}", query={"market": market}, shape=Playlist.from_json)

    def get_playlist_items(
        self, playlist_id: str, *, limit: int = 100, offset: int = 0, market: Optional[str] = None
    ) -> Page[PlaylistItem]:
        """Entries that are not tracks (podcast episodes) are reported in ``page.skipped``."""

        playlist_id = parse_spotify_id(playlist_id, "playlist")
        return self.call(
            "GET",
            f"/playlists/{playlist_id}/tracks",
            query={"limit": min(MAX_PLAYLIST_PAGE_LIMIT, int(limit)), "offset": int(offset), "market": market},
            shape=Page.of(PlaylistItem.from_json),
        )

    def current_user_playlists(self, *, limit: int = 50, offset: int = 0) -> Page[Playlist]:
        return self.call(
            "GET",
            "/me/playlists",
            query={"limit": min(MAX_PAGE_LIMIT, int(limit)), "offset": int(offset)},
            shape=Page.of(Playlist.from_json),
        )

    # -----------------
    # Player
    # -----------------

    def get_playback_state(self, *, market: Optional[str] = None) -> Optional[PlaybackState]:
        """None when nothing is playing (the API answers 204)."""

        result = self.call(
            "GET",
            "/me/player",
            query={"market": market},
            shape=PlaybackState.from_json,
            scopes=("user-read-playback-state",),
        )
        return None if result is UNIT else result

    def start_playback(
        self,
        *,
        device_id: Optional[str] = None,
        context_uri: Optional[str] = None,
        track_ids: Optional[Iterable[str]] = None,
        position_ms: Optional[int] = None,
    ) -> None:
        body: Dict[str, Any] = {}
        if context_uri:
            body["context_uri"] = context_uri
        if track_ids:
            body["uris"] = [spotify_uri("track", t) for t in self._ids(track_ids, "track")]
        if position_ms is not None:
            body["position_ms"] = int(position_ms)
        self.call("PUT", "/me/player/play", query={"device_id": device_id}, body=body or None, scopes=_PLAYBACK_CONTROL)

    def pause_playback(self, *, device_id: Optional[str] = None) -> None:
        self.call("PUT", "/me/player/pause", query={"device_id": device_id}, scopes=_PLAYBACK_CONTROL)

    def skip_to_next(self, *, device_id: Optional[str] = None) -> None:
        self.call("POST", "/me/player/next", query={"device_id": device_id}, scopes=_PLAYBACK_CONTROL)

    # -----------------
    # Helpers
    # -----------------

    @staticmethod
    def _ids(values: Iterable[str], kind: str) -> List[str]:
        ids = [parse_spotify_id(v, kind) for v in (values or [])]
        if not ids:
            raise ValueError(f"At least one {kind} id is required")
        if len(ids) > MAX_IDS_PER_REQUEST:
            raise ValueError(f"At most {MAX_IDS_PER_REQUEST} {kind} ids per request, got {len(ids)}")
        return ids
