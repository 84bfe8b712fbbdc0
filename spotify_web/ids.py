import re
import urllib.parse

from .errors import InvalidSpotifyId

# Spotify IDs are base-62 strings, 22 characters long.
_ID_RE = re.compile(r"^[0-9A-Za-z]{22}$")

OPEN_SPOTIFY_HOST = "open.spotify.com"


def parse_spotify_id(value: str, expected_type: str) -> str:
    """Return the bare ID from a raw ID, a ``spotify:<type>:<id>`` URI or an open.spotify.com URL."""

    raw = str(value or "").strip()
    if not raw:
        raise InvalidSpotifyId(f"Empty {expected_type} id")

    if raw.startswith("spotify:"):
        parts = raw.split(":")
        if len(parts) != 3:
            raise InvalidSpotifyId(f"Malformed Spotify URI: {raw}")
        _, kind, spotify_id = parts
    elif raw.startswith(("http://", "https://")):
        parsed = urllib.parse.urlparse(raw)
        if parsed.hostname != OPEN_SPOTIFY_HOST:
            raise InvalidSpotifyId(f"Not a Spotify URL: {raw}")
        segments = [s for s in parsed.path.split("/") if s]
        # Localized links look like /intl-de/track/<id>
        if segments and segments[0].startswith("intl-"):
            segments = segments[1:]
        if len(segments) != 2:
            raise InvalidSpotifyId(f"Malformed Spotify URL: {raw}")
        kind, spotify_id = segments
    else:
        kind, spotify_id = expected_type, raw

    if kind != expected_type:
        raise InvalidSpotifyId(f"Expected a {expected_type} but got a {kind}: {raw}")
    if not _ID_RE.match(spotify_id):
        raise InvalidSpotifyId(f"Invalid Spotify id: {spotify_id}")
    return spotify_id


def spotify_uri(kind: str, spotify_id: str) -> str:
    return f"spotify:{kind}:{parse_spotify_id(spotify_id, kind)}"
