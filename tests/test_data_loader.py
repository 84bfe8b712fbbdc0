import sys
import unittest
from pathlib import Path

# Ensure local imports work when running this file directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from spotify_web.data_loader import SpotifyDataLoader
from tests.fakes import API, PLAYLIST_ID, FakeTransport, episode_json, json_response, make_client, make_token, track_json


class FakeSpotifyLibrary:
    """Serves paged library endpoints with server-built next/previous URLs."""

    def __init__(self, *, total_liked: int = 120, total_playlist_tracks: int = 215, total_playlists: int = 87):
        self.total_liked = total_liked
        self.total_playlist_tracks = total_playlist_tracks
        self.total_playlists = total_playlists

    def __call__(self, request):
        limit = int(request.query.get("limit", 20))
        offset = int(request.query.get("offset", 0))

        if request.path == "/v1/me/tracks":
            return self._page(request.path, self.total_liked, limit, offset, self._saved_track)
        if request.path == f"/v1/playlists/{PLAYLIST_ID}/tracks":
            return self._page(request.path, self.total_playlist_tracks, limit, offset, self._playlist_entry)
        if request.path == "/v1/me/playlists":
            return self._page(request.path, self.total_playlists, limit, offset, self._playlist)
        return json_response({"error": {"status": 404, "message": "Not found"}}, 404)

    def _page(self, path, total, limit, offset, make_item):
        n = min(limit, max(0, total - offset))
        items = [make_item(offset + i) for i in range(n)]
        next_offset = offset + limit
        return json_response(
            {
                "href": f"https://api.spotify.com{path}?offset={offset}&limit={limit}",
                "items": items,
                "total": total,
                "limit": limit,
                "offset": offset,
                "next": f"https://api.spotify.com{path}?offset={next_offset}&limit={limit}" if next_offset < total else None,
                "previous": f"https://api.spotify.com{path}?offset={max(0, offset - limit)}&limit={limit}" if offset else None,
            }
        )

    @staticmethod
    def _saved_track(idx):
        return {"added_at": "2020-01-01T00:00:00Z", "track": track_json(f"{idx:022d}", name=f"Liked Song {idx}")}

    @staticmethod
    def _playlist_entry(idx):
        # Every 50th entry is a podcast episode, every 70th lost its track upstream.
        if idx % 50 == 49:
            track = episode_json()
        elif idx % 70 == 69:
            track = None
        else:
            track = track_json(f"{idx:022d}", name=f"Playlist Song {idx}")
        return {"added_at": "2020-01-01T00:00:00Z", "track": track, "is_local": False}

    @staticmethod
    def _playlist(idx):
        return {
            "id": f"playlist{idx}",
            "name": f"Playlist {idx}",
            "uri": f"spotify:playlist:playlist{idx}",
            "tracks": {"href": f"{API}/playlists/playlist{idx}/tracks", "total": 123},
            "owner": {"id": "me", "uri": "spotify:user:me", "display_name": "Me"},
            "public": False,
        }


class TestSpotifyDataLoaderLimits(unittest.TestCase):
    def setUp(self):
        self.transport = FakeTransport(handler=FakeSpotifyLibrary())
        client, _ = make_client(self.transport, make_token())
        self.loader = SpotifyDataLoader(client)

    def test_load_liked_songs_respects_max_tracks(self):
        tracks = self.loader.load_liked_songs(max_tracks=30)
        self.assertEqual(len(tracks), 30)
        self.assertEqual(tracks[0].track.name, "Liked Song 0")
        self.assertEqual(len(self.transport.requests), 1)

    def test_load_liked_songs_follows_next_urls(self):
        tracks = self.loader.load_liked_songs()
        self.assertEqual(len(tracks), 120)
        self.assertEqual(tracks[-1].track.name, "Liked Song 119")
        self.assertEqual([r.query["offset"] for r in self.transport.requests], ["0", "50", "100"])

    def test_load_playlist_tracks_respects_max_tracks(self):
        tracks = self.loader.load_playlist_tracks(PLAYLIST_ID, max_tracks=40)
        self.assertEqual(len(tracks), 40)

    def test_load_playlist_tracks_skips_episodes_and_removed_tracks(self):
        tracks = self.loader.load_playlist_tracks(PLAYLIST_ID)

        episodes = [i for i in range(215) if i % 50 == 49]
        removed = [i for i in range(215) if i % 70 == 69 and i % 50 != 49]
        self.assertEqual(len(tracks), 215 - len(episodes) - len(removed))
        self.assertEqual([e.discriminant for e in self.loader.skipped], ["episode"] * len(episodes))
        # Indexes are positions within each page of 100.
        self.assertEqual([e.index for e in self.loader.skipped], [i % 100 for i in episodes])
        self.assertNotIn("Playlist Song 49", [t.name for t in tracks])

    def test_skipped_only_reports_latest_call(self):
        self.loader.load_playlist_tracks(PLAYLIST_ID)
        self.loader.load_playlist_tracks(PLAYLIST_ID)
        self.assertEqual(len(self.loader.skipped), 4)

        self.loader.load_liked_songs(max_tracks=10)
        self.assertEqual(self.loader.skipped, [])

    def test_list_all_playlists_respects_max_playlists(self):
        playlists = self.loader.list_all_playlists(max_playlists=10)
        self.assertEqual(len(playlists), 10)
        self.assertEqual(playlists[0].owner.display_name, "Me")
        self.assertEqual(playlists[0].tracks_total, 123)

    def test_list_all_playlists_loads_everything(self):
        playlists = self.loader.list_all_playlists()
        self.assertEqual(len(playlists), 87)
        self.assertIsNone(playlists[0].items)


if __name__ == "__main__":
    unittest.main(verbosity=2)
