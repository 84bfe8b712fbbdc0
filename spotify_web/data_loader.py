from typing import Callable, Iterator, List, Optional, TypeVar

from .client import SpotifyClient
from .errors import UnsupportedVariant
from .models import Page, Playlist, SavedTrack, Track

T = TypeVar("T")


class SpotifyDataLoader:
    """High-level helpers that walk every page of a collection.

    Paging follows the server's ``next`` URLs rather than recomputing offsets.
    Each helper takes an optional cap so a very large library can be sampled
    without fetching everything. ``skipped`` holds the unsupported items seen by
    the most recent helper call.
    """

    def __init__(self, client: SpotifyClient):
        self.client = client
        self.skipped: List[UnsupportedVariant] = []

    def iter_pages(self, first: Callable[[], Page[T]]) -> Iterator[Page[T]]:
        page: Optional[Page[T]] = first()
        while page is not None:
            yield page
            page = self.client.next_page(page)

    def _collect(self, first: Callable[[], Page[T]], cap: Optional[int]) -> List[T]:
        self.skipped = []
        out: List[T] = []
        for page in self.iter_pages(first):
            self.skipped.extend(page.skipped)
            for item in page.items:
                out.append(item)
                if cap is not None and len(out) >= int(cap):
                    return out
        return out

    def list_all_playlists(self, *, limit: int = 50, max_playlists: Optional[int] = None) -> List[Playlist]:
        return self._collect(lambda: self.client.current_user_playlists(limit=limit), max_playlists)

    def load_liked_songs(self, *, limit: int = 50, max_tracks: Optional[int] = None) -> List[SavedTrack]:
        return self._collect(lambda: self.client.get_saved_tracks(limit=limit), max_tracks)

    def load_playlist_tracks(
        self,
        playlist_id: str,
        *,
        limit: int = 100,
        max_tracks: Optional[int] = None,
    ) -> List[Track]:
        """Return the playlist's tracks in order.

        Entries whose track was removed upstream are dropped; entries that are not
        tracks end up in ``self.skipped``.
        """

        self.skipped = []
        tracks: List[Track] = []
        for page in self.iter_pages(lambda: self.client.get_playlist_items(playlist_id, limit=limit)):
            self.skipped.extend(page.skipped)
            for entry in page.items:
                if entry.item is None:
                    continue
                tracks.append(entry.item)
                if max_tracks is not None and len(tracks) >= int(max_tracks):
                    return tracks
        return tracks
