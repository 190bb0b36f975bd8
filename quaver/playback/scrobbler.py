"""
Scrobbler.

Listens to engine state changes and reports plays to the media server:
a "now playing" notification when a song starts, and a submission once a
song has been listened to long enough.
"""

import asyncio
import logging
from typing import Optional, Protocol

from quaver.api.errors import is_cancellation

from .models import EngineState
from .state import ChangeKind, StateChange

logger = logging.getLogger(__name__)

# Share of the song that must be heard before it counts as played
DEFAULT_SUBMIT_PERCENT = 50
# A play always counts after this many seconds
SUBMIT_AFTER_SECONDS = 240


class ScrobbleTarget(Protocol):
    async def scrobble(self, song_id: str, submission: bool, position: Optional[float] = None) -> None:
        ...


class Scrobbler:
    """Engine listener that forwards plays to a ScrobbleTarget."""

    def __init__(self, target: ScrobbleTarget, submit_percent: int = DEFAULT_SUBMIT_PERCENT):
        self.target = target
        self.submit_percent = submit_percent
        self._song_id: Optional[str] = None
        self._duration: float = 0.0
        self._last_position: float = 0.0
        self._submitted = False
        self._tasks: set[asyncio.Task] = set()

    def __call__(self, change: StateChange) -> None:
        snapshot = change.snapshot

        if ChangeKind.POSITION in change:
            self._last_position = snapshot.current_time
            self._maybe_submit()

        if ChangeKind.SONG in change:
            self._maybe_submit()
            song = snapshot.song
            self._song_id = song.id if song else None
            self._duration = song.duration if song else 0.0
            self._last_position = 0.0
            self._submitted = False
            if song and snapshot.state is EngineState.PLAYING:
                self._send(song.id, submission=False)

    def _maybe_submit(self) -> None:
        if self._submitted or not self._song_id:
            return
        threshold = SUBMIT_AFTER_SECONDS
        if self._duration > 0:
            threshold = min(threshold, self._duration * self.submit_percent / 100)
        if self._last_position >= threshold:
            self._submitted = True
            self._send(self._song_id, submission=True, position=self._last_position)

    def _send(self, song_id: str, submission: bool, position: Optional[float] = None) -> None:
        task = asyncio.create_task(self._scrobble(song_id, submission, position))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _scrobble(self, song_id: str, submission: bool, position: Optional[float]) -> None:
        try:
            await self.target.scrobble(song_id, submission=submission, position=position)
            logger.debug(f"Scrobbled {song_id} (submission={submission})")
        except Exception as e:
            if is_cancellation(e):
                return
            logger.warning(f"Scrobble failed for {song_id}: {e}")

    async def close(self) -> None:
        """Wait for in-flight scrobbles."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
