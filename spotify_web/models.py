"""Typed shapes for Web API payloads.

Every ``from_json`` reads required keys with ``payload[key]`` so a missing key
surfaces as a parse failure, and leaves context-dependent keys ``None`` when the
API omits them. Parse failures are KeyError/TypeError/ValueError; the client
turns them into ``MalformedResponse``.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from .errors import UnsupportedVariant

T = TypeVar("T")


class _Unit:
    """Success marker for 2xx responses without a body."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNIT"

    def __bool__(self) -> bool:
        return True


UNIT = _Unit()


def _obj(payload: Any, what: str) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise TypeError(f"{what} must be an object, got {type(payload).__name__}")
    return payload


def _str(value: Any, key: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{key} must be a string, got {type(value).__name__}")
    return value


def _opt_list(payload: Dict[str, Any], key: str, parse: Callable[[Any], T]) -> Optional[List[T]]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, list):
        raise TypeError(f"{key} must be a list")
    return [parse(v) for v in value]


def _opt_dict(payload: Dict[str, Any], key: str) -> Optional[Dict[str, str]]:
    value = payload.get(key)
    if value is None:
        return None
    return dict(_obj(value, key))


def _followers(payload: Dict[str, Any]) -> Optional[int]:
    followers = payload.get("followers")
    if not isinstance(followers, dict) or followers.get("total") is None:
        return None
    return int(followers["total"])


@dataclass(frozen=True)
class Image:
    url: str
    height: Optional[int] = None
    width: Optional[int] = None

    @classmethod
    def from_json(cls, payload: Any) -> "Image":
        payload = _obj(payload, "image")
        return cls(url=_str(payload["url"], "url"), height=payload.get("height"), width=payload.get("width"))


@dataclass(frozen=True)
class Artist:
    id: str
    name: str
    uri: str
    href: Optional[str] = None
    external_urls: Optional[Dict[str, str]] = None
    genres: Optional[List[str]] = None
    popularity: Optional[int] = None
    followers: Optional[int] = None
    images: Optional[List[Image]] = None

    @classmethod
    def from_json(cls, payload: Any) -> "Artist":
        payload = _obj(payload, "artist")
        return cls(
            id=_str(payload["id"], "id"),
            name=_str(payload["name"], "name"),
            uri=_str(payload["uri"], "uri"),
            href=payload.get("href"),
            external_urls=_opt_dict(payload, "external_urls"),
            genres=_opt_list(payload, "genres", str),
            popularity=payload.get("popularity"),
            followers=_followers(payload),
            images=_opt_list(payload, "images", Image.from_json),
        )


@dataclass(frozen=True)
class Album:
    id: str
    name: str
    uri: str
    album_type: Optional[str] = None
    total_tracks: Optional[int] = None
    release_date: Optional[str] = None
    release_date_precision: Optional[str] = None
    artists: Optional[List[Artist]] = None
    images: Optional[List[Image]] = None
    external_urls: Optional[Dict[str, str]] = None
    label: Optional[str] = None
    popularity: Optional[int] = None
    tracks: Optional["Page[Track]"] = None

    @classmethod
    def from_json(cls, payload: Any) -> "Album":
        payload = _obj(payload, "album")
        tracks = payload.get("tracks")
        return cls(
            id=_str(payload["id"], "id"),
            name=_str(payload["name"], "name"),
            uri=_str(payload["uri"], "uri"),
            album_type=payload.get("album_type"),
            total_tracks=payload.get("total_tracks"),
            release_date=payload.get("release_date"),
            release_date_precision=payload.get("release_date_precision"),
            artists=_opt_list(payload, "artists", Artist.from_json),
            images=_opt_list(payload, "images", Image.from_json),
            external_urls=_opt_dict(payload, "external_urls"),
            label=payload.get("label"),
            popularity=payload.get("popularity"),
            tracks=Page.from_json(tracks, Track.from_json) if tracks is not None else None,
        )


@dataclass(frozen=True)
class Track:
    # Local files in playlists have no Spotify id.
    id: Optional[str]
    name: str
    uri: str
    duration_ms: int
    artists: List[Artist]
    explicit: Optional[bool] = None
    album: Optional[Album] = None
    disc_number: Optional[int] = None
    track_number: Optional[int] = None
    popularity: Optional[int] = None
    preview_url: Optional[str] = None
    is_local: bool = False
    external_ids: Optional[Dict[str, str]] = None
    external_urls: Optional[Dict[str, str]] = None

    @classmethod
    def from_json(cls, payload: Any) -> "Track":
        payload = _obj(payload, "track")
        is_local = bool(payload.get("is_local", False))
        artist_parser = _local_artist if is_local else Artist.from_json
        album = payload.get("album")
        return cls(
            id=payload.get("id") if is_local else _str(payload["id"], "id"),
            name=_str(payload["name"], "name"),
            uri=_str(payload["uri"], "uri"),
            duration_ms=int(payload["duration_ms"]),
            artists=[artist_parser(a) for a in _list(payload["artists"], "artists")],
            explicit=payload.get("explicit"),
            album=Album.from_json(album) if album is not None and not is_local else None,
            disc_number=payload.get("disc_number"),
            track_number=payload.get("track_number"),
            popularity=payload.get("popularity"),
            preview_url=payload.get("preview_url"),
            is_local=is_local,
            external_ids=_opt_dict(payload, "external_ids"),
            external_urls=_opt_dict(payload, "external_urls"),
        )


def _list(value: Any, key: str) -> list:
    if not isinstance(value, list):
        raise TypeError(f"{key} must be a list")
    return value


def _local_artist(payload: Any) -> Artist:
    payload = _obj(payload, "artist")
    return Artist(id=payload.get("id") or "", name=str(payload.get("name") or ""), uri=str(payload.get("uri") or ""))


def parse_playable(payload: Any) -> Track:
    """Dispatch a playable item on its ``type`` discriminant.

    Only tracks are modeled; episodes and anything newer raise
    ``UnsupportedVariant`` instead of being parsed as a track.
    """

    payload = _obj(payload, "playable item")
    discriminant = payload.get("type")
    if not isinstance(discriminant, str):
        raise ValueError("playable item has no type discriminant")
    if discriminant == "track":
        return Track.from_json(payload)
    raise UnsupportedVariant(discriminant)


@dataclass(frozen=True)
class SavedTrack:
    added_at: str
    track: Track

    @classmethod
    def from_json(cls, payload: Any) -> "SavedTrack":
        payload = _obj(payload, "saved track")
        return cls(added_at=_str(payload["added_at"], "added_at"), track=Track.from_json(payload["track"]))


@dataclass(frozen=True)
class PlaylistItem:
    """One playlist entry. ``item`` is None when the entry's track was removed upstream."""

    added_at: Optional[str]
    item: Optional[Track]
    is_local: bool = False
    added_by: Optional[str] = None

    @classmethod
    def from_json(cls, payload: Any) -> "PlaylistItem":
        payload = _obj(payload, "playlist item")
        raw = payload["track"]
        added_by = payload.get("added_by")
        return cls(
            added_at=payload.get("added_at"),
            item=parse_playable(raw) if raw is not None else None,
            is_local=bool(payload.get("is_local", False)),
            added_by=added_by.get("id") if isinstance(added_by, dict) else None,
        )


@dataclass(frozen=True)
class User:
    id: str
    uri: str
    display_name: Optional[str] = None
    external_urls: Optional[Dict[str, str]] = None
    followers: Optional[int] = None
    images: Optional[List[Image]] = None
    country: Optional[str] = None
    product: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_json(cls, payload: Any) -> "User":
        payload = _obj(payload, "user")
        return cls(
            id=_str(payload["id"], "id"),
            uri=_str(payload["uri"], "uri"),
            display_name=payload.get("display_name"),
            external_urls=_opt_dict(payload, "external_urls"),
            followers=_followers(payload),
            images=_opt_list(payload, "images", Image.from_json),
            country=payload.get("country"),
            product=payload.get("product"),
            email=payload.get("email"),
        )


@dataclass(frozen=True)
class Playlist:
    id: str
    name: str
    uri: str
    owner: User
    snapshot_id: Optional[str] = None
    description: Optional[str] = None
    public: Optional[bool] = None
    collaborative: Optional[bool] = None
    images: Optional[List[Image]] = None
    external_urls: Optional[Dict[str, str]] = None
    followers: Optional[int] = None
    tracks_total: Optional[int] = None
    # Only full playlist objects embed the first page of entries.
    items: Optional["Page[PlaylistItem]"] = None

    @classmethod
    def from_json(cls, payload: Any) -> "Playlist":
        payload = _obj(payload, "playlist")
        entries = payload.get("tracks")
        tracks_total = None
        page = None
        if isinstance(entries, dict):
            tracks_total = entries.get("total")
            if "items" in entries:
                page = Page.from_json(entries, PlaylistItem.from_json)
        return cls(
            id=_str(payload["id"], "id"),
            name=_str(payload["name"], "name"),
            uri=_str(payload["uri"], "uri"),
            owner=User.from_json(payload["owner"]),
            snapshot_id=payload.get("snapshot_id"),
            description=payload.get("description"),
            public=payload.get("public"),
            collaborative=payload.get("collaborative"),
            images=_opt_list(payload, "images", Image.from_json),
            external_urls=_opt_dict(payload, "external_urls"),
            followers=_followers(payload),
            tracks_total=tracks_total,
            items=page,
        )


@dataclass(frozen=True)
class Device:
    id: Optional[str]
    name: str
    type: str
    is_active: bool = False
    is_private_session: bool = False
    is_restricted: bool = False
    volume_percent: Optional[int] = None

    @classmethod
    def from_json(cls, payload: Any) -> "Device":
        payload = _obj(payload, "device")
        return cls(
            id=payload.get("id"),
            name=_str(payload["name"], "name"),
            type=_str(payload["type"], "type"),
            is_active=bool(payload.get("is_active", False)),
            is_private_session=bool(payload.get("is_private_session", False)),
            is_restricted=bool(payload.get("is_restricted", False)),
            volume_percent=payload.get("volume_percent"),
        )


@dataclass(frozen=True)
class PlaybackState:
    """Current playback. ``unsupported`` is set when something other than a track is playing."""

    is_playing: bool
    device: Optional[Device] = None
    repeat_state: Optional[str] = None
    shuffle_state: Optional[bool] = None
    progress_ms: Optional[int] = None
    timestamp: Optional[int] = None
    currently_playing_type: Optional[str] = None
    context_uri: Optional[str] = None
    item: Optional[Track] = None
    unsupported: Optional[UnsupportedVariant] = field(default=None, compare=False)

    @classmethod
    def from_json(cls, payload: Any) -> "PlaybackState":
        payload = _obj(payload, "playback state")
        device = payload.get("device")
        context = payload.get("context")

        item = None
        unsupported = None
        raw_item = payload.get("item")
        if raw_item is not None:
            try:
                item = parse_playable(raw_item)
            except UnsupportedVariant as e:
                unsupported = e

        return cls(
            is_playing=bool(payload["is_playing"]),
            device=Device.from_json(device) if device is not None else None,
            repeat_state=payload.get("repeat_state"),
            shuffle_state=payload.get("shuffle_state"),
            progress_ms=payload.get("progress_ms"),
            timestamp=payload.get("timestamp"),
            currently_playing_type=payload.get("currently_playing_type"),
            context_uri=context.get("uri") if isinstance(context, dict) else None,
            item=item,
            unsupported=unsupported,
        )


@dataclass(frozen=True)
class Page(Generic[T]):
    """A paging object. ``next``/``previous`` are the server's URLs, kept verbatim.

    Items whose discriminant is not modeled are left out of ``items`` and
    reported in ``skipped`` (each with its position in the server's list).
    """

    items: List[T]
    total: int
    limit: int
    offset: int
    next: Optional[str] = None
    previous: Optional[str] = None
    href: Optional[str] = None
    skipped: List[UnsupportedVariant] = field(default_factory=list, compare=False)
    item_parser: Optional[Callable[[Any], T]] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_json(cls, payload: Any, item_parser: Callable[[Any], T]) -> "Page[T]":
        payload = _obj(payload, "page")
        items: List[T] = []
        skipped: List[UnsupportedVariant] = []
        for index, raw in enumerate(_list(payload["items"], "items")):
            try:
                items.append(item_parser(raw))
            except UnsupportedVariant as e:
                e.index = index
                skipped.append(e)

        return cls(
            items=items,
            total=int(payload["total"]),
            limit=int(payload["limit"]),
            offset=int(payload["offset"]),
            next=payload.get("next"),
            previous=payload.get("previous"),
            href=payload.get("href"),
            skipped=skipped,
            item_parser=item_parser,
        )

    @staticmethod
    def of(item_parser: Callable[[Any], T]) -> Callable[[Any], "Page[T]"]:
        """Shape callable for the client: ``client.call(..., shape=Page.of(Track.from_json))``."""

        return lambda payload: Page.from_json(payload, item_parser)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)


def list_of(key: str, item_parser: Callable[[Any], T], *, nullable: bool = False) -> Callable[[Any], List]:
    """Shape for ``{key: [...]}`` envelopes such as ``GET /tracks?ids=``."""

    def parse(payload: Any) -> List:
        values = _list(_obj(payload, "response")[key], key)
        return [None if (v is None and nullable) else item_parser(v) for v in values]

    return parse
