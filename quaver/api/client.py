"""
Media server API client.

Talks to Subsonic-compatible servers (Navidrome, Gonic, Airsonic, ...) with
token authentication and maps their song objects to Quaver songs.
"""

import asyncio
import hashlib
import logging
import secrets
from typing import Any, Optional
from urllib.parse import urlencode

import aiohttp

from quaver.playback.models import Song

from .errors import CancellationError, ServerAPIError

logger = logging.getLogger(__name__)

API_VERSION = "1.16.1"
REQUEST_TIMEOUT = 10


class SubsonicClient:
    """Subsonic REST API client."""

    def __init__(self, base_url: str, username: str, password: str, client_name: str = "quaver"):
        """
        Initialize API client.

        Args:
            base_url: Server root, e.g. https://music.example.com
            username: Account name
            password: Account password (sent as a salted token)
            client_name: Client identifier reported to the server
        """
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.password = password
        self.client_name = client_name
        self.server_id = self.base_url
        self._session: Optional[aiohttp.ClientSession] = None
        self._inflight: set[asyncio.Task] = set()
        self._aborted: set[asyncio.Task] = set()

    async def __aenter__(self) -> "SubsonicClient":
        """Async context manager entry."""
        self._session = aiohttp.ClientSession(headers={"User-Agent": f"{self.client_name}"})
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[Any],
    ) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        self.cancel_pending()
        if self._session:
            await self._session.close()
            self._session = None

    def cancel_pending(self) -> int:
        """Abort every in-flight request. Waiters get a CancellationError."""
        count = 0
        for task in list(self._inflight):
            if not task.done():
                self._aborted.add(task)
                task.cancel()
                count += 1
        if count:
            logger.debug(f"Cancelled {count} pending requests")
        return count

    # =========================================================================
    # Authentication
    # =========================================================================

    def _auth_params(self) -> dict[str, str]:
        salt = secrets.token_hex(8)
        token = hashlib.md5((self.password + salt).encode()).hexdigest()
        return {
            "u": self.username,
            "t": token,
            "s": salt,
            "v": API_VERSION,
            "c": self.client_name,
            "f": "json",
        }

    def build_url(self, endpoint: str, **params: Any) -> str:
        """Signed URL for an endpoint, usable without extra headers."""
        query = {**self._auth_params(), **{k: v for k, v in params.items() if v is not None}}
        return f"{self.base_url}/rest/{endpoint}?{urlencode(query)}"

    async def ping(self) -> bool:
        """Check that the server is reachable and accepts our credentials."""
        try:
            await self._request("ping")
        except ServerAPIError as e:
            logger.error(f"Server ping failed: {e}")
            return False
        return True

    # =========================================================================
    # Songs
    # =========================================================================

    async def fetch_songs(self, query: str, limit: int = 50) -> list[Song]:
        """Search songs by free text."""
        data = await self._request("search3", query=query, songCount=limit, albumCount=0, artistCount=0)
        songs = data.get("searchResult3", {}).get("song", [])
        return [self.to_song(s) for s in songs]

    async def fetch_song(self, song_id: str) -> Optional[Song]:
        data = await self._request("getSong", id=song_id)
        raw = data.get("song")
        return self.to_song(raw) if raw else None

    async def fetch_album_songs(self, album_id: str) -> list[Song]:
        data = await self._request("getAlbum", id=album_id)
        return [self.to_song(s) for s in data.get("album", {}).get("song", [])]

    async def fetch_playlist_songs(self, playlist_id: str) -> list[Song]:
        data = await self._request("getPlaylist", id=playlist_id)
        return [self.to_song(s) for s in data.get("playlist", {}).get("entry", [])]

    async def fetch_random_songs(self, size: int = 20) -> list[Song]:
        data = await self._request("getRandomSongs", size=size)
        return [self.to_song(s) for s in data.get("randomSongs", {}).get("song", [])]

    def to_song(self, raw: dict[str, Any]) -> Song:
        """Map a Subsonic song object."""
        song_id = str(raw.get("id", ""))
        replay_gain = raw.get("replayGain") or {}
        cover = raw.get("coverArt")
        return Song(
            id=song_id,
            server_id=self.server_id,
            name=raw.get("title", ""),
            artist=raw.get("artist", ""),
            album=raw.get("album", ""),
            duration=float(raw.get("duration", 0) or 0),
            bpm=raw.get("bpm") or None,
            user_favorite=bool(raw.get("starred")),
            user_rating=raw.get("userRating"),
            stream_url=self.build_url("stream", id=song_id),
            image_url=self.build_url("getCoverArt", id=cover, size=300) if cover else "",
            gain=replay_gain.get("trackGain"),
            peak=replay_gain.get("trackPeak"),
        )

    # =========================================================================
    # Annotations
    # =========================================================================

    async def scrobble(self, song_id: str, submission: bool, position: Optional[float] = None) -> None:
        """
        Report playback of a song.

        Args:
            song_id: Song id
            submission: True for a completed play, False for "now playing"
            position: Playhead position in seconds, where supported
        """
        params: dict[str, Any] = {"id": song_id, "submission": str(submission).lower()}
        if position is not None:
            params["position"] = int(position * 1000)
        await self._request("scrobble", **params)

    async def set_favorite(self, song_ids: list[str], favorite: bool) -> None:
        endpoint = "star" if favorite else "unstar"
        await self._request(endpoint, id=song_ids)

    async def set_rating(self, song_id: str, rating: Optional[int]) -> None:
        await self._request("setRating", id=song_id, rating=rating or 0)

    async def fetch_image(self, url: str) -> Optional[bytes]:
        """Download cover art bytes."""
        if not url:
            return None
        session = self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)
        try:
            async with session.get(url, timeout=timeout) as resp:
                if resp.status != 200:
                    logger.debug(f"Image request failed: {resp.status}")
                    return None
                return await resp.read()
        except aiohttp.ClientError as e:
            logger.warning(f"Image request error: {e}")
            return None

    # =========================================================================
    # Transport
    # =========================================================================

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"User-Agent": f"{self.client_name}"})
        return self._session

    async def _request(self, endpoint: str, **params: Any) -> dict[str, Any]:
        """
        Call an endpoint and unwrap the `subsonic-response` envelope.

        Raises:
            CancellationError: The request was aborted by cancel_pending()
            ServerAPIError: Transport failure or a failed server response
        """
        task = asyncio.ensure_future(self._fetch(endpoint, params))
        self._inflight.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            if task in self._aborted:
                raise CancellationError(f"{endpoint} cancelled") from None
            raise
        finally:
            self._inflight.discard(task)
            self._aborted.discard(task)

    async def _fetch(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        query: list[tuple[str, Any]] = list(self._auth_params().items())
        for key, value in params.items():
            if value is None:
                continue
            if isinstance(value, (list, tuple)):
                query.extend((key, v) for v in value)
            else:
                query.append((key, value))

        url = f"{self.base_url}/rest/{endpoint}"
        session = self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)
        try:
            async with session.get(url, params=query, timeout=timeout) as resp:
                if resp.status != 200:
                    raise ServerAPIError(f"{endpoint} returned HTTP {resp.status}", status=resp.status)
                data = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise ServerAPIError(f"{endpoint} request failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise ServerAPIError(f"{endpoint} timed out") from e

        body = data.get("subsonic-response", {}) if isinstance(data, dict) else {}
        if body.get("status") != "ok":
            error = body.get("error", {})
            raise ServerAPIError(
                error.get("message", f"{endpoint} failed"),
                status=200,
                code=int(error.get("code", 0)),
            )
        return body
