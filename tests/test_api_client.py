"""Tests for the Subsonic API client against a fake server."""

import asyncio
import hashlib
from urllib.parse import parse_qs, urlsplit

import pytest
from aiohttp import test_utils, web

from quaver.api import CancellationError, ServerAPIError, SubsonicClient, is_cancellation

SONG = {
    "id": "42",
    "title": "So What",
    "artist": "Miles Davis",
    "album": "Kind of Blue",
    "duration": 562,
    "starred": "2024-01-01T00:00:00Z",
    "userRating": 5,
    "coverArt": "al-7",
    "replayGain": {"trackGain": -7.5, "trackPeak": 0.98},
}


def _ok(**body) -> web.Response:
    return web.json_response({"subsonic-response": {"status": "ok", "version": "1.16.1", **body}})


class FakeSubsonic:
    """Minimal Subsonic server recording every request."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, dict[str, list[str]]]] = []
        self.password = "secret"
        self.release = asyncio.Event()

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/rest/{endpoint}", self.handle)
        app.router.add_get("/cover.jpg", self.cover)
        return app

    async def handle(self, request: web.Request) -> web.Response:
        endpoint = request.match_info["endpoint"]
        query = parse_qs(request.query_string)
        self.requests.append((endpoint, query))

        token = hashlib.md5((self.password + query["s"][0]).encode()).hexdigest()
        if query["t"][0] != token:
            return web.json_response(
                {"subsonic-response": {"status": "failed", "error": {"code": 40, "message": "Wrong username or password"}}}
            )
        if endpoint == "search3":
            return _ok(searchResult3={"song": [SONG]})
        if endpoint == "getSong":
            return _ok(song=SONG)
        if endpoint == "slow":
            await self.release.wait()
            return _ok()
        if endpoint == "broken":
            return web.Response(status=500)
        return _ok()

    async def cover(self, request: web.Request) -> web.Response:
        return web.Response(body=b"\xff\xd8jpeg")


@pytest.fixture
async def server():
    fake = FakeSubsonic()
    test_server = test_utils.TestServer(fake.app())
    await test_server.start_server()
    fake.url = str(test_server.make_url("")).rstrip("/")
    yield fake
    fake.release.set()
    await test_server.close()


@pytest.fixture
async def client(server):
    api = SubsonicClient(server.url, "me", "secret")
    yield api
    await api.close()


class TestAuthentication:
    """Tests for token authentication."""

    def test_auth_params(self) -> None:
        """Test the token is md5(password + salt) with a fresh salt."""
        api = SubsonicClient("https://music.example.com/", "me", "secret")
        params = api._auth_params()
        assert params["t"] == hashlib.md5(("secret" + params["s"]).encode()).hexdigest()
        assert params["f"] == "json"
        assert params["c"] == "quaver"
        assert api._auth_params()["s"] != params["s"]

    def test_build_url(self) -> None:
        """Test signed URLs carry credentials and skip empty params."""
        api = SubsonicClient("https://music.example.com/", "me", "secret")
        parts = urlsplit(api.build_url("stream", id="42", maxBitRate=None))
        query = parse_qs(parts.query)
        assert parts.path == "/rest/stream"
        assert query["id"] == ["42"]
        assert query["u"] == ["me"]
        assert "maxBitRate" not in query

    @pytest.mark.asyncio
    async def test_ping(self, client) -> None:
        assert await client.ping() is True

    @pytest.mark.asyncio
    async def test_ping_wrong_password(self, server) -> None:
        async with SubsonicClient(server.url, "me", "wrong") as api:
            assert await api.ping() is False


class TestSongs:
    """Tests for fetching and mapping songs."""

    @pytest.mark.asyncio
    async def test_search(self, client, server) -> None:
        """Test search results are mapped to songs."""
        songs = await client.fetch_songs("miles")
        assert len(songs) == 1
        song = songs[0]
        assert song.id == "42"
        assert song.name == "So What"
        assert song.duration == 562.0
        assert song.user_favorite is True
        assert song.user_rating == 5
        assert song.gain == -7.5
        assert song.peak == 0.98
        assert song.server_id == server.url
        assert "/rest/stream?" in song.stream_url
        assert "id=al-7" in song.image_url
        assert server.requests[-1][1]["query"] == ["miles"]

    @pytest.mark.asyncio
    async def test_fetch_song(self, client) -> None:
        song = await client.fetch_song("42")
        assert song is not None and song.artist == "Miles Davis"

    def test_song_without_cover(self) -> None:
        """Test missing optional fields get defaults."""
        api = SubsonicClient("https://music.example.com", "me", "secret")
        song = api.to_song({"id": 7, "title": "Untitled"})
        assert song.id == "7"
        assert song.image_url == ""
        assert song.user_favorite is False
        assert song.gain is None


class TestAnnotations:
    """Tests for scrobbling, favorites and ratings."""

    @pytest.mark.asyncio
    async def test_scrobble(self, client, server) -> None:
        await client.scrobble("42", submission=True, position=12.5)
        endpoint, query = server.requests[-1]
        assert endpoint == "scrobble"
        assert query["submission"] == ["true"]
        assert query["position"] == ["12500"]

    @pytest.mark.asyncio
    async def test_favorite_many(self, client, server) -> None:
        """Test several ids are sent as repeated parameters."""
        await client.set_favorite(["1", "2"], True)
        assert server.requests[-1][0] == "star"
        assert server.requests[-1][1]["id"] == ["1", "2"]
        await client.set_favorite(["1"], False)
        assert server.requests[-1][0] == "unstar"

    @pytest.mark.asyncio
    async def test_clear_rating(self, client, server) -> None:
        await client.set_rating("42", None)
        assert server.requests[-1][1]["rating"] == ["0"]

    @pytest.mark.asyncio
    async def test_fetch_image(self, client, server) -> None:
        assert await client.fetch_image(f"{server.url}/cover.jpg") == b"\xff\xd8jpeg"
        assert await client.fetch_image(f"{server.url}/missing.jpg") is None
        assert await client.fetch_image("") is None


class TestErrors:
    """Tests for failures and cancellation."""

    @pytest.mark.asyncio
    async def test_http_error(self, client) -> None:
        with pytest.raises(ServerAPIError) as exc_info:
            await client._request("broken")
        assert exc_info.value.status == 500
        assert not is_cancellation(exc_info.value)

    @pytest.mark.asyncio
    async def test_failed_response(self, server) -> None:
        async with SubsonicClient(server.url, "me", "wrong") as api:
            with pytest.raises(ServerAPIError) as exc_info:
                await api.fetch_songs("x")
        assert exc_info.value.code == 40

    @pytest.mark.asyncio
    async def test_cancel_pending(self, client) -> None:
        """Test aborted requests raise the cancellation marker."""
        request = asyncio.create_task(client._request("slow"))
        await asyncio.sleep(0.05)
        assert client.cancel_pending() == 1
        with pytest.raises(CancellationError) as exc_info:
            await request
        assert is_cancellation(exc_info.value)
