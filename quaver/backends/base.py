"""
Abstract playback backend interface.

Defines the contract every playback backend implements. The backend never
decides queue order: it executes what the queue engine tells it and reports
raw transport events back through the registered event sink.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from quaver.playback.events import BackendEvent, PlaybackError, PositionTick, TrackEnded
from quaver.playback.models import PlayerSlot, Song

from .types import BackendInfo

logger = logging.getLogger(__name__)

# Receives backend events; must be safe to call from any thread
EventSink = Callable[[BackendEvent], None]


class PlaybackBackend(ABC):
    """
    Abstract base class for playback backends.

    Two variants are provided:
    - mpv: an out-of-process decode engine driven over JSON IPC
    - embedded: two in-process decode slots feeding one output stream

    Both expose the same slot model: a song is primed into a slot without
    being heard, and activating a slot makes it the audible one while the
    previously active slot is stopped and released.
    """

    def __init__(self, name: str = "PlaybackBackend"):
        """Initialize backend."""
        self.name = name
        self._volume: int = 50  # 0-100
        self._speed: float = 1.0
        self._active_slot: Optional[PlayerSlot] = None
        self._is_connected: bool = False
        self._event_sink: Optional[EventSink] = None

    # =========================================================================
    # Slot Control - Required
    # =========================================================================

    @abstractmethod
    async def prime(self, slot: PlayerSlot, song: Song) -> None:
        """Load a song into a slot without starting playback."""
        pass

    @abstractmethod
    async def activate(self, slot: PlayerSlot) -> None:
        """Make a primed slot audible; the other slot is stopped and released."""
        pass

    @abstractmethod
    async def release(self, slot: PlayerSlot) -> None:
        """Forget whatever is primed in a slot."""
        pass

    # =========================================================================
    # Transport - Required
    # =========================================================================

    @abstractmethod
    async def pause(self) -> None:
        """Pause the active slot."""
        pass

    @abstractmethod
    async def resume(self) -> None:
        """Resume the active slot."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop playback and release both slots."""
        pass

    @abstractmethod
    async def seek(self, seconds: float) -> None:
        """Seek the active slot. Fire-and-forget."""
        pass

    @abstractmethod
    async def set_volume(self, level: int) -> None:
        """Set volume (0-100) of the active slot."""
        pass

    @abstractmethod
    async def set_speed(self, speed: float) -> None:
        """Set playback speed (0.5-1.5) of the active slot."""
        pass

    # =========================================================================
    # Lifecycle - Required
    # =========================================================================

    @abstractmethod
    async def connect(self) -> bool:
        """Initialize the backend. Returns True if successful."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect and clean up backend resources."""
        pass

    def is_connected(self) -> bool:
        """Check if backend is connected."""
        return self._is_connected

    @property
    def active_slot(self) -> Optional[PlayerSlot]:
        return self._active_slot

    # =========================================================================
    # Events
    # =========================================================================

    def set_event_sink(self, sink: Optional[EventSink]) -> None:
        """Register the receiver of transport events."""
        self._event_sink = sink

    def _emit(self, event: BackendEvent) -> None:
        if not self._event_sink:
            return
        try:
            self._event_sink(event)
        except Exception as e:
            logger.error(f"Event sink error for {type(event).__name__}: {e}")

    def _notify_position_tick(self, seconds: float) -> None:
        """Report playhead position of the active slot."""
        self._emit(PositionTick(seconds=max(0.0, seconds)))

    def _notify_track_ended(self, slot: PlayerSlot) -> None:
        """Report that the media in `slot` completed naturally."""
        self._emit(TrackEnded(slot=slot))

    def _notify_playback_error(self, message: str, slot: Optional[PlayerSlot] = None) -> None:
        """Report a decode or network failure."""
        self._emit(PlaybackError(message=message, slot=slot))

    # =========================================================================
    # Info
    # =========================================================================

    def get_info(self) -> BackendInfo:
        """Get information about this backend."""
        return BackendInfo(
            backend_type="unknown",
            name=self.name,
            device_id="",
        )
