"""
Remote command handler.

Translates client events from authenticated remote sessions into queue
engine commands. State broadcasts are driven by the engine's change
notifications, so handlers only reply directly for errors and for
`proxy` (cover art for the requesting session only).
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Optional

from quaver.api.errors import ServerAPIError, is_cancellation
from quaver.playback.models import PlayerStatus, RepeatMode, ShuffleMode

from .protocol import ClientMessage, ServerEvent, error_event, proxy_event

if TYPE_CHECKING:
    from quaver.api.client import SubsonicClient
    from quaver.playback.engine import QueueEngine

logger = logging.getLogger(__name__)

MIN_RATING = 0
MAX_RATING = 5


class CommandError(Exception):
    """Invalid command payload; reported to the sender as an `error` event."""

    pass


class RemoteCommandHandler:
    """
    Handles control events from remote sessions.

    Favorite and rating changes are applied to the queue immediately and
    forwarded to the media server in the background.
    """

    def __init__(self, engine: "QueueEngine", api: Optional["SubsonicClient"] = None):
        """
        Initialize command handler.

        Args:
            engine: Queue engine receiving the commands
            api: Optional media server client for annotations and cover art
        """
        self.engine = engine
        self.api = api
        self._tasks: set[asyncio.Task] = set()

    async def handle_message(self, message: ClientMessage) -> list[ServerEvent]:
        """
        Handle a control event.

        Returns:
            Events to send back to the requesting session only
        """
        try:
            if message.event == "play":
                await self.engine.play()
            elif message.event == "pause":
                await self.engine.pause()
            elif message.event == "playback":
                await self._handle_playback(message)
            elif message.event == "next":
                await self.engine.next()
            elif message.event == "previous":
                await self.engine.previous()
            elif message.event in ("seek", "position"):
                await self.engine.seek(_number(message, "position"))
            elif message.event == "volume":
                await self.engine.set_volume(int(_number(message, "volume")))
            elif message.event == "repeat":
                await self._handle_repeat(message)
            elif message.event == "shuffle":
                await self._handle_shuffle(message)
            elif message.event == "favorite":
                await self._handle_favorite(message)
            elif message.event == "rating":
                await self._handle_rating(message)
            elif message.event == "proxy":
                return await self._handle_proxy()
            else:
                logger.warning(f"Unhandled remote event: {message.event}")
        except CommandError as e:
            logger.debug(f"Rejected remote {message.event}: {e}")
            return [error_event(str(e))]
        except Exception as e:
            if is_cancellation(e):
                return []
            logger.error(f"Error handling remote event {message.event}: {e}", exc_info=True)
            return [error_event(f"{message.event} failed")]
        return []

    async def close(self) -> None:
        """Wait for background server updates to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _handle_playback(self, message: ClientMessage) -> None:
        status = message.get("status")
        try:
            target = PlayerStatus(str(status).upper())
        except ValueError:
            raise CommandError(f"Invalid playback status: {status}")
        if target is PlayerStatus.PLAYING:
            await self.engine.play()
        else:
            await self.engine.pause()

    async def _handle_repeat(self, message: ClientMessage) -> None:
        value = message.get("repeat")
        if value is None:
            await self.engine.toggle_repeat()
            return
        try:
            mode = RepeatMode(str(value).upper())
        except ValueError:
            raise CommandError(f"Invalid repeat mode: {value}")
        await self.engine.set_repeat(mode)

    async def _handle_shuffle(self, message: ClientMessage) -> None:
        value = message.get("shuffle")
        if value is None:
            await self.engine.toggle_shuffle()
            return
        if isinstance(value, bool):
            mode = ShuffleMode.TRACK if value else ShuffleMode.NONE
        else:
            try:
                mode = ShuffleMode(str(value).upper())
            except ValueError:
                raise CommandError(f"Invalid shuffle mode: {value}")
        await self.engine.set_shuffle(mode)

    async def _handle_favorite(self, message: ClientMessage) -> None:
        song_id = _song_id(message)
        favorite = message.get("favorite")
        if not isinstance(favorite, bool):
            raise CommandError("favorite must be true or false")

        await self.engine.set_favorite([song_id], favorite)
        if self.api:
            self._spawn(self.api.set_favorite([song_id], favorite), f"favorite {song_id}")

    async def _handle_rating(self, message: ClientMessage) -> None:
        song_id = _song_id(message)
        rating = message.get("rating")
        if rating is not None:
            if isinstance(rating, bool) or not isinstance(rating, int):
                raise CommandError("rating must be an integer")
            if not MIN_RATING <= rating <= MAX_RATING:
                raise CommandError(f"rating must be between {MIN_RATING} and {MAX_RATING}")
            if rating == 0:
                rating = None

        await self.engine.set_rating([song_id], rating)
        if self.api:
            self._spawn(self.api.set_rating(song_id, rating), f"rating {song_id}")

    async def _handle_proxy(self) -> list[ServerEvent]:
        song = self.engine.snapshot().song
        if song is None or not song.image_url:
            return [error_event("No cover art available")]
        if self.api is None:
            return [error_event("No media server configured")]

        image = await self.api.fetch_image(song.image_url)
        if image is None:
            return [error_event("Failed to fetch cover art")]
        return [proxy_event(image)]

    # =========================================================================
    # Helpers
    # =========================================================================

    def _spawn(self, coro: Any, label: str) -> None:
        task = asyncio.create_task(self._run_update(coro, label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_update(self, coro: Any, label: str) -> None:
        try:
            await coro
        except ServerAPIError as e:
            if not is_cancellation(e):
                logger.warning(f"Media server update failed ({label}): {e}")
        except asyncio.CancelledError:
            pass


def _number(message: ClientMessage, key: str) -> float:
    value = message.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise CommandError(f"{message.event} requires a numeric {key}")
    return float(value)


def _song_id(message: ClientMessage) -> str:
    song_id = message.get("id")
    if song_id is None or song_id == "":
        raise CommandError(f"{message.event} requires an id")
    return str(song_id)
