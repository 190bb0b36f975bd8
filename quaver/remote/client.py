"""
Remote control client.

Connects to a remote server, authenticates with the credentials the
server echoes back from `/credentials`, mirrors server events into a
`RemoteInfo` view and reconnects with exponential backoff.
"""

import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional
from urllib.parse import urlsplit, urlunsplit

import aiohttp
import websockets
from websockets import ClientConnection

from .protocol import (
    AUTHENTICATE,
    ClientMessage,
    CloseCode,
    CloseKind,
    ProtocolError,
    ServerEvent,
    classify_close,
    decode_server_event,
)

logger = logging.getLogger(__name__)

# Connection constants
PING_INTERVAL = 20.0  # seconds
CREDENTIALS_TIMEOUT = 10.0  # seconds
CLOSE_TIMEOUT = 5.0  # seconds to wait for the closing handshake
INITIAL_RECONNECT_DELAY = 1.0  # seconds
MAX_RECONNECT_DELAY = 60.0  # seconds
RECONNECT_BACKOFF_MULTIPLIER = 2.0

EventCallback = Callable[[ServerEvent], None]
CloseCallback = Callable[[CloseKind, Optional[int]], None]


@dataclass
class RemoteInfo:
    """Client-side mirror of the player state."""

    connected: bool = False
    song: Optional[dict[str, Any]] = None
    status: str = "PAUSED"
    repeat: str = "NONE"
    shuffle: bool = False
    volume: int = 0
    position: float = 0.0
    cover: Optional[bytes] = None
    error: Optional[str] = None
    favorites: dict[str, bool] = field(default_factory=dict)
    ratings: dict[str, Optional[int]] = field(default_factory=dict)

    def apply(self, event: ServerEvent) -> None:
        """Update the view from a server event."""
        data = event.data
        if event.event == "state" and isinstance(data, dict):
            self.song = data.get("song")
            self.status = data.get("status", self.status)
            self.repeat = data.get("repeat", self.repeat)
            self.shuffle = bool(data.get("shuffle", self.shuffle))
            self.volume = data.get("volume", self.volume)
            self.position = data.get("position", self.position)
        elif event.event == "song":
            self.song = data
            self.cover = None
        elif event.event == "playback":
            self.status = data
        elif event.event == "position":
            self.position = data
        elif event.event == "repeat":
            self.repeat = data
        elif event.event == "shuffle":
            self.shuffle = bool(data)
        elif event.event == "volume":
            self.volume = data
        elif event.event == "favorite" and isinstance(data, dict):
            self.favorites[str(data.get("id"))] = bool(data.get("favorite"))
            self._patch_song(data.get("id"), "userFavorite", bool(data.get("favorite")))
        elif event.event == "rating" and isinstance(data, dict):
            self.ratings[str(data.get("id"))] = data.get("rating")
            self._patch_song(data.get("id"), "userRating", data.get("rating"))
        elif event.event == "proxy" and isinstance(data, str):
            try:
                self.cover = base64.b64decode(data)
            except (binascii.Error, ValueError):
                logger.debug("Ignoring malformed cover art payload")
        elif event.event == "error":
            self.error = data

    def _patch_song(self, song_id: Any, key: str, value: Any) -> None:
        if self.song and str(self.song.get("id")) == str(song_id):
            self.song = {**self.song, key: value}


def credentials_url(ws_url: str) -> str:
    """HTTP URL of the `/credentials` route served next to a WebSocket URL."""
    parts = urlsplit(ws_url)
    scheme = "https" if parts.scheme == "wss" else "http"
    return urlunsplit((scheme, parts.netloc, "/credentials", "", ""))


class RemoteClient:
    """
    Remote control client.

    Handles:
    - Fetching credentials and authenticating on every connection
    - Mirroring server events into `info`
    - Reconnection with exponential backoff
    - Close code classification
    """

    def __init__(
        self,
        url: str,
        username: str = "",
        password: str = "",
        on_event: Optional[EventCallback] = None,
        on_close: Optional[CloseCallback] = None,
    ):
        """
        Initialize remote client.

        Args:
            url: WebSocket URL of the remote server (ws://host:port/)
            username: Basic auth username for `/credentials`
            password: Basic auth password for `/credentials`
            on_event: Called for every server event
            on_close: Called with the classified close of every connection
        """
        self.url = url
        self.info = RemoteInfo()
        self._auth = aiohttp.BasicAuth(username, password) if username else None
        self._on_event = on_event
        self._on_close = on_close

        # Connection state
        self._ws: Optional[ClientConnection] = None
        self._natural = False
        self._should_run = False
        self._reconnect_requested = False
        self._reconnect_delay = INITIAL_RECONNECT_DELAY
        self._connected_event = asyncio.Event()

        # Tasks
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def is_connected(self) -> bool:
        return self.info.connected

    async def start(self) -> None:
        """Start the connection loop."""
        if self._task is not None:
            return
        self._should_run = True
        self._task = asyncio.create_task(self._connection_loop())

    async def stop(self) -> None:
        """Close the connection and stop reconnecting."""
        self._should_run = False
        closing = await self._close_current(CloseCode.SUPERSEDED, "client stopped")
        task = self._task
        if task:
            if closing:
                # Let the connection loop report the close before it ends
                await asyncio.wait({task}, timeout=CLOSE_TIMEOUT)
            if not task.done():
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def reconnect(self) -> None:
        """Replace the current connection with a fresh one."""
        self._reconnect_requested = True
        self._reconnect_delay = INITIAL_RECONNECT_DELAY
        if self._ws is None and self._task is None:
            await self.start()
            return
        await self._close_current(CloseCode.SUPERSEDED, "reconnecting")

    async def wait_connected(self, timeout: Optional[float] = None) -> bool:
        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def send(self, event: str, **payload: Any) -> bool:
        """
        Send a client event.

        Returns:
            True if sent, False if not connected
        """
        if self._ws is None or not self.info.connected:
            logger.debug(f"Not connected, dropping {event}")
            return False
        try:
            await self._ws.send(ClientMessage(event, payload).encode())
            return True
        except websockets.ConnectionClosed:
            return False

    async def play(self) -> bool:
        return await self.send("play")

    async def pause(self) -> bool:
        return await self.send("pause")

    async def next(self) -> bool:
        return await self.send("next")

    async def previous(self) -> bool:
        return await self.send("previous")

    async def seek(self, position: float) -> bool:
        return await self.send("position", position=position)

    async def set_volume(self, volume: int) -> bool:
        return await self.send("volume", volume=volume)

    async def toggle_repeat(self) -> bool:
        return await self.send("repeat")

    async def toggle_shuffle(self) -> bool:
        return await self.send("shuffle")

    async def set_favorite(self, song_id: str, favorite: bool) -> bool:
        return await self.send("favorite", id=song_id, favorite=favorite)

    async def set_rating(self, song_id: str, rating: Optional[int]) -> bool:
        return await self.send("rating", id=song_id, rating=rating)

    async def request_cover(self) -> bool:
        return await self.send("proxy")

    # -------------------------------------------------------------------------
    # Connection Loop
    # -------------------------------------------------------------------------

    async def _connection_loop(self) -> None:
        """Main connection loop with reconnection logic."""
        while self._should_run:
            kind = await self._connect_and_run()

            if not self._should_run:
                break

            if kind is CloseKind.NATURAL:
                if self._reconnect_requested:
                    self._reconnect_requested = False
                    continue
                logger.info("Connection superseded by another client")
                self._should_run = False
                break

            # Exponential backoff
            logger.info(f"Reconnecting in {self._reconnect_delay:.1f}s...")
            await asyncio.sleep(self._reconnect_delay)
            self._reconnect_delay = min(
                self._reconnect_delay * RECONNECT_BACKOFF_MULTIPLIER,
                MAX_RECONNECT_DELAY,
            )

        self._task = None

    async def _connect_and_run(self) -> CloseKind:
        """Connect, authenticate and mirror events until the connection closes."""
        self._natural = False
        code: Optional[int] = None

        try:
            header = await self._fetch_credentials()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to get credentials: {e}")
            return self._closed(None)

        logger.info(f"Connecting to {self.url}...")
        try:
            async with websockets.connect(self.url, ping_interval=PING_INTERVAL) as ws:
                self._ws = ws
                if header:
                    await ws.send(ClientMessage(AUTHENTICATE, {"header": header}).encode())

                self.info.connected = True
                self.info.error = None
                self._reconnect_delay = INITIAL_RECONNECT_DELAY
                self._connected_event.set()
                logger.info("Remote connected")

                async for raw in ws:
                    self._handle_frame(raw)
                code = ws.close_code

        except websockets.ConnectionClosed as e:
            code = e.rcvd.code if e.rcvd else None
        except (OSError, websockets.WebSocketException) as e:
            logger.error(f"Connection failed: {e}")
        finally:
            self.info.connected = False
            self._connected_event.clear()
            self._ws = None

        return self._closed(code)

    def _closed(self, code: Optional[int]) -> CloseKind:
        kind = classify_close(code, self._natural)
        if kind is CloseKind.RELOAD:
            logger.warning(f"Server rejected the session ({code}), refreshing credentials")
        elif kind is CloseKind.SHUTDOWN:
            logger.warning("Remote server is shutting down")
        elif kind is CloseKind.UNEXPECTED:
            logger.error(f"Remote connection closed unexpectedly ({code})")
            self.info.error = f"Connection closed unexpectedly ({code})"
        else:
            logger.debug(f"Remote connection closed ({code})")

        if self._on_close:
            self._on_close(kind, code)
        return kind

    async def _close_current(self, code: int, reason: str) -> bool:
        """Close the open connection, if any. Returns True if one was closed."""
        ws = self._ws
        if ws is None:
            return False
        self._natural = True
        try:
            await ws.close(code=code, reason=reason)
        except websockets.WebSocketException as e:
            logger.debug(f"Error closing connection: {e}")
        return True

    async def _fetch_credentials(self) -> str:
        """Ask the server for the authorization header to present."""
        timeout = aiohttp.ClientTimeout(total=CREDENTIALS_TIMEOUT)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(credentials_url(self.url), auth=self._auth) as resp:
                if resp.status == 401:
                    logger.warning("Remote server requires credentials")
                    return ""
                resp.raise_for_status()
                return (await resp.text()).strip()

    def _handle_frame(self, raw: Any) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            event = decode_server_event(raw)
        except ProtocolError as e:
            logger.warning(f"Ignoring malformed server message: {e}")
            return

        if event.event == "error":
            logger.warning(f"Remote error: {event.data}")
        self.info.apply(event)
        if self._on_event:
            try:
                self._on_event(event)
            except Exception as e:
                logger.error(f"Error in remote event callback: {e}", exc_info=True)
