import os
import sys
import unittest
from datetime import timedelta
from pathlib import Path
from unittest import mock

# Ensure local imports work when running this file directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from spotify_web.client import SpotifyClient
from spotify_web.errors import (
    ApiError,
    BadRequest,
    ErrorKind,
    Forbidden,
    InsufficientScope,
    InvalidSpotifyId,
    MalformedResponse,
    NotFound,
    RateLimited,
    ReauthorizationRequired,
    RemoteFault,
    Unauthorized,
)
from spotify_web.models import UNIT, SavedTrack
from spotify_web.transport import TransportResponse
from tests.fakes import (
    API,
    PLAYLIST_ID,
    TRACK_ID,
    FakeTransport,
    episode_json,
    json_response,
    make_client,
    make_token,
    page_json,
    token_payload,
    track_json,
)


def error_envelope(status, message):
    return json_response({"error": {"status": status, "message": message}}, status)


class TestRequestPipeline(unittest.TestCase):
    def test_sends_bearer_token_and_parses_shape(self):
        transport = FakeTransport(responses=[json_response(track_json())])
        client, _ = make_client(transport, make_token("access-1"))

        track = client.get_track(TRACK_ID, market="US")

        self.assertEqual(track.id, TRACK_ID)
        (request,) = transport.requests
        self.assertEqual(request.method, "GET")
        self.assertEqual(request.path, f"/v1/tracks/{TRACK_ID}")
        self.assertEqual(request.query, {"market": "US"})
        self.assertEqual(request.headers["Authorization"], "Bearer access-1")

    def test_accepts_uris_and_urls_for_ids(self):
        transport = FakeTransport(responses=[json_response(track_json()), json_response(track_json())])
        client, _ = make_client(transport, make_token())

        client.get_track(f"spotify:track:{TRACK_ID}")
        client.get_track(f"https://open.spotify.com/intl-de/track/{TRACK_ID}?si=abc")

        self.assertEqual([r.path for r in transport.requests], [f"/v1/tracks/{TRACK_ID}"] * 2)

    def test_invalid_id_never_reaches_network(self):
        transport = FakeTransport()
        client, _ = make_client(transport, make_token())

        with self.assertRaises(InvalidSpotifyId):
            client.get_track("spotify:album:6akEvsycLGftJxYudPjmqK")
        with self.assertRaises(InvalidSpotifyId):
            client.get_track("not-an-id")
        self.assertEqual(transport.requests, [])

    def test_empty_store_requires_authorization(self):
        transport = FakeTransport()
        client, _ = make_client(transport)

        with self.assertRaises(ReauthorizationRequired):
            client.me()
        self.assertEqual(transport.requests, [])

    def test_missing_scope_fails_before_sending(self):
        transport = FakeTransport()
        client, _ = make_client(transport, make_token(scopes=("user-read-private",)))

        with self.assertRaises(InsufficientScope) as ctx:
            client.get_saved_tracks()
        self.assertEqual(ctx.exception.missing, ("user-library-read",))
        self.assertEqual(transport.requests, [])

    def test_scoped_endpoints_without_token_require_authorization(self):
        transport = FakeTransport()
        client, store = make_client(transport)

        with self.assertRaises(ReauthorizationRequired):
            client.get_saved_tracks()

        store.install(make_token())
        store.invalidate()
        with self.assertRaises(ReauthorizationRequired):
            client.pause_playback()
        self.assertEqual(transport.requests, [])

    def test_scopes_are_checked_against_refreshed_token(self):
        transport = FakeTransport(
            responses=[
                json_response(token_payload("access-2", scope="user-library-read")),
                json_response(page_json([])),
            ]
        )
        client, _ = make_client(transport, make_token("access-1", expires_in=-5, scopes=()))

        page = client.get_saved_tracks()

        self.assertEqual(page.items, [])
        self.assertEqual(transport.api_requests()[0].headers["Authorization"], "Bearer access-2")

    def test_expired_token_is_refreshed_before_sending(self):
        transport = FakeTransport(
            responses=[json_response(token_payload("access-2")), json_response({"id": "me", "uri": "spotify:user:me"})]
        )
        client, store = make_client(transport, make_token("access-1", expires_in=-5))

        user = client.me()

        self.assertEqual(user.id, "me")
        self.assertEqual(len(transport.token_requests()), 1)
        self.assertEqual(transport.api_requests()[0].headers["Authorization"], "Bearer access-2")
        self.assertEqual(store.current().refresh_token, "refresh-1")


class TestErrorMapping(unittest.TestCase):
    def call_with(self, response):
        transport = FakeTransport(responses=[response])
        client, _ = make_client(transport, make_token())
        return client, transport

    def test_rate_limit_surfaces_retry_after_without_retrying(self):
        client, transport = self.call_with(
            json_response({"error": {"status": 429, "message": "API rate limit exceeded"}}, 429, {"Retry-After": "5"})
        )

        with self.assertRaises(RateLimited) as ctx:
            client.me()
        self.assertEqual(ctx.exception.kind, ErrorKind.RATE_LIMITED)
        self.assertEqual(ctx.exception.retry_after, timedelta(seconds=5))
        self.assertEqual(len(transport.requests), 1)

    def test_unrepresentable_retry_after_still_rate_limited(self):
        for value in ("inf", "1e15", "nan"):
            with self.subTest(value=value):
                client, _ = self.call_with(json_response({}, 429, {"Retry-After": value}))
                with self.assertRaises(RateLimited) as ctx:
                    client.me()
                self.assertIsNone(ctx.exception.retry_after)

    def test_status_codes_map_to_kinds(self):
        cases = [
            (400, BadRequest, ErrorKind.BAD_REQUEST),
            (403, Forbidden, ErrorKind.FORBIDDEN),
            (404, NotFound, ErrorKind.NOT_FOUND),
            (500, RemoteFault, ErrorKind.REMOTE_FAULT),
            (503, RemoteFault, ErrorKind.REMOTE_FAULT),
        ]
        for status, error_cls, kind in cases:
            with self.subTest(status=status):
                client, _ = self.call_with(error_envelope(status, "Something went wrong"))
                with self.assertRaises(error_cls) as ctx:
                    client.me()
                self.assertEqual(ctx.exception.kind, kind)
                self.assertEqual(ctx.exception.http_status, status)
                self.assertEqual(ctx.exception.message, "Something went wrong")

    def test_unlisted_status_is_unexpected(self):
        client, _ = self.call_with(TransportResponse(418, {}, b"I'm a teapot"))

        with self.assertRaises(ApiError) as ctx:
            client.me()
        self.assertEqual(ctx.exception.kind, ErrorKind.UNEXPECTED_STATUS)
        self.assertEqual(ctx.exception.http_status, 418)
        self.assertEqual(ctx.exception.message, "I'm a teapot")

    def test_non_json_success_is_malformed(self):
        client, _ = self.call_with(TransportResponse(200, {}, b"<html>oops</html>"))

        with self.assertRaises(MalformedResponse) as ctx:
            client.me()
        self.assertEqual(ctx.exception.http_status, 200)

    def test_wrong_shape_is_malformed(self):
        client, _ = self.call_with(json_response({"display_name": "no id here"}))

        with self.assertRaises(MalformedResponse):
            client.me()

    def test_playable_without_discriminant_is_malformed(self):
        item = track_json()
        del item["type"]
        client, _ = self.call_with(json_response(page_json([{"added_at": None, "track": item}])))

        with self.assertRaises(MalformedResponse):
            client.get_playlist_items(PLAYLIST_ID)


class TestUnauthorizedRecovery(unittest.TestCase):
    def test_401_refreshes_once_and_resends(self):
        transport = FakeTransport(
            responses=[
                error_envelope(401, "The access token expired"),
                json_response(token_payload("access-2")),
                json_response({"id": "me", "uri": "spotify:user:me"}),
            ]
        )
        client, _ = make_client(transport, make_token("access-1"))

        self.assertEqual(client.me().id, "me")
        api = transport.api_requests()
        self.assertEqual([r.headers["Authorization"] for r in api], ["Bearer access-1", "Bearer access-2"])
        self.assertEqual(len(transport.token_requests()), 1)

    def test_second_401_is_surfaced(self):
        transport = FakeTransport(
            responses=[
                error_envelope(401, "Invalid access token"),
                json_response(token_payload("access-2")),
                error_envelope(401, "Invalid access token"),
            ]
        )
        client, _ = make_client(transport, make_token("access-1"))

        with self.assertRaises(Unauthorized):
            client.me()
        self.assertEqual(len(transport.token_requests()), 1)
        self.assertEqual(len(transport.api_requests()), 2)

    def test_401_with_revoked_refresh_token_requires_authorization(self):
        transport = FakeTransport(
            responses=[
                error_envelope(401, "Invalid access token"),
                json_response({"error": "invalid_grant"}, 400),
            ]
        )
        client, store = make_client(transport, make_token("access-1"))

        with self.assertRaises(ReauthorizationRequired):
            client.me()
        self.assertIsNone(store.current())


class TestEmptyBodies(unittest.TestCase):
    def test_empty_success_is_unit(self):
        transport = FakeTransport(responses=[TransportResponse(200, {}, b"")])
        client, _ = make_client(transport, make_token())

        self.assertIs(client.call("PUT", "/me/player/pause"), UNIT)

    def test_save_tracks_sends_json_body(self):
        transport = FakeTransport(responses=[TransportResponse(200, {}, b"")])
        client, _ = make_client(transport, make_token())

        self.assertIsNone(client.save_tracks([TRACK_ID]))

        (request,) = transport.requests
        self.assertEqual(request.method, "PUT")
        self.assertEqual(request.headers["Content-Type"], "application/json")
        self.assertEqual(request.json(), {"ids": [TRACK_ID]})

    def test_nothing_playing_is_none(self):
        transport = FakeTransport(responses=[TransportResponse(204, {}, b"")])
        client, _ = make_client(transport, make_token())

        self.assertIsNone(client.get_playback_state())

    def test_start_playback_body(self):
        transport = FakeTransport(responses=[TransportResponse(204, {}, b"")])
        client, _ = make_client(transport, make_token())

        client.start_playback(device_id="dev1", track_ids=[TRACK_ID], position_ms=1000)

        (request,) = transport.requests
        self.assertEqual(request.query, {"device_id": "dev1"})
        self.assertEqual(request.json(), {"uris": [f"spotify:track:{TRACK_ID}"], "position_ms": 1000})

    def test_id_batches_are_bounded(self):
        client, _ = make_client(FakeTransport(), make_token())

        with self.assertRaises(ValueError):
            client.check_saved_tracks([])
        with self.assertRaises(ValueError):
            client.check_saved_tracks([TRACK_ID] * 51)


class TestPaging(unittest.TestCase):
    def test_mixed_playlist_page_skips_unsupported_items(self):
        page = page_json(
            [
                {"added_at": "2024-01-01T00:00:00Z", "track": track_json()},
                {"added_at": "2024-01-02T00:00:00Z", "track": episode_json()},
            ],
            limit=100,
        )
        transport = FakeTransport(responses=[json_response(page)])
        client, _ = make_client(transport, make_token())

        result = client.get_playlist_items(PLAYLIST_ID)

        self.assertEqual(len(result.items), 1)
        self.assertEqual(result.items[0].item.id, TRACK_ID)
        self.assertEqual(len(result.skipped), 1)
        self.assertEqual(result.skipped[0].discriminant, "episode")
        self.assertEqual(result.skipped[0].index, 1)
        self.assertEqual(result.total, 2)

    def test_next_page_uses_server_url_verbatim(self):
        next_url = f"{API}/me/tracks?offset=20&limit=20&locale=en"
        first = page_json([{"added_at": "t", "track": track_json()}], total=2, next_url=next_url)
        second = page_json([{"added_at": "t", "track": track_json(name="Two")}], total=2, offset=20, previous_url=f"{API}/me/tracks?offset=0&limit=20")
        transport = FakeTransport(responses=[json_response(first), json_response(second)])
        client, _ = make_client(transport, make_token())

        page = client.get_saved_tracks()
        page2 = client.next_page(page)

        self.assertEqual(transport.requests[1].url, next_url)
        self.assertIsInstance(page2.items[0], SavedTrack)
        self.assertEqual(page2.items[0].track.name, "Two")
        self.assertIsNone(client.next_page(page2))
        self.assertEqual(len(transport.requests), 2)

    def test_cursor_to_another_host_is_refused(self):
        first = page_json([], total=40, next_url="https://evil.example/v1/me/tracks?offset=20&limit=20")
        transport = FakeTransport(responses=[json_response(first)])
        client, _ = make_client(transport, make_token())

        page = client.get_saved_tracks()
        with self.assertRaises(ValueError):
            client.next_page(page)
        with self.assertRaises(ValueError):
            client.call("GET", "http://api.spotify.com/v1/me")
        self.assertEqual(len(transport.requests), 1)

    def test_several_tracks_keeps_null_positions(self):
        transport = FakeTransport(responses=[json_response({"tracks": [track_json(), None]})])
        client, _ = make_client(transport, make_token())

        result = client.get_several_tracks([TRACK_ID, "1" * 22])

        self.assertEqual(result[0].id, TRACK_ID)
        self.assertIsNone(result[1])
        self.assertEqual(transport.requests[0].query["ids"], f"{TRACK_ID},{'1' * 22}")


class TestFromConfig(unittest.TestCase):
    @mock.patch.dict(os.environ, {}, clear=True)
    def test_builds_client_from_config(self):
        transport = FakeTransport()
        client = SpotifyClient.from_config(
            {
                "spotify_client_id": "cid",
                "spotify_client_secret": "secret",
                "spotify_redirect_uri": "http://127.0.0.1:9999/callback",
                "spotify_client_auth": "body",
                "spotify_token_margin_seconds": 120,
                "spotify_open_browser": False,
            },
            transport=transport,
        )

        self.assertIs(client.transport, transport)
        self.assertEqual(client.auth.credentials.redirect_uri, "http://127.0.0.1:9999/callback")
        self.assertEqual(client.auth.client_auth, "body")
        self.assertFalse(client.auth.open_browser)
        self.assertEqual(client.store.safety_margin, 120.0)

    @mock.patch.dict(os.environ, {}, clear=True)
    def test_invalid_config_lists_problems(self):
        with self.assertRaises(ValueError) as ctx:
            SpotifyClient.from_config({"spotify_redirect_uri": "https://example.com/cb"}, transport=FakeTransport())
        self.assertIn("spotify_client_id", str(ctx.exception))


if __name__ == "__main__":
    unittest.main(verbosity=2)
