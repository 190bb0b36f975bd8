"""
Typed backend events and the channel that carries them to the engine.

Backends emit from their own threads or tasks; the engine consumes from a
single loop. Position ticks are advisory and coalesced under load, while
ended, error and primed events are never dropped.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional, Union

from .models import PlayerSlot

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_CAPACITY = 32


@dataclass(frozen=True)
class PositionTick:
    """Periodic playhead position of the active slot."""

    seconds: float


@dataclass(frozen=True)
class TrackEnded:
    """The media in `slot` completed naturally."""

    slot: PlayerSlot


@dataclass(frozen=True)
class PlaybackError:
    """Decode or network failure reported by the backend."""

    message: str
    slot: Optional[PlayerSlot] = None


@dataclass(frozen=True)
class SlotPrimed:
    """
    A background load of entry `unique_id` into `slot` finished.

    `error` is set when the load failed.
    """

    slot: PlayerSlot
    unique_id: str
    error: Optional[str] = None


BackendEvent = Union[PositionTick, TrackEnded, PlaybackError, SlotPrimed]


class EventChannel:
    """
    Bounded channel of backend events.

    When full, a new position tick replaces the newest queued tick (or is
    dropped), and a critical event evicts the oldest queued tick. Critical
    events are kept even past capacity.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CHANNEL_CAPACITY,
        ready: Optional[asyncio.Event] = None,
    ):
        """
        Initialize channel.

        Args:
            capacity: Soft limit on queued events
            ready: Event set whenever something is queued (shared with the
                consumer so one wait covers several sources)
        """
        self._capacity = capacity
        self._items: deque[BackendEvent] = deque()
        self._ready = ready or asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.dropped_ticks = 0

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Bind to the consuming loop so other threads can publish."""
        self._loop = loop

    def publish(self, event: BackendEvent) -> None:
        """Publish from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            self.put(event)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self.put(event)
        else:
            loop.call_soon_threadsafe(self.put, event)

    def put(self, event: BackendEvent) -> None:
        """Enqueue on the consuming loop's thread."""
        if len(self._items) >= self._capacity:
            if isinstance(event, PositionTick):
                self._coalesce_tick(event)
                return
            self._evict_oldest_tick()
        self._items.append(event)
        self._ready.set()

    def _coalesce_tick(self, event: PositionTick) -> None:
        self.dropped_ticks += 1
        if self._items and isinstance(self._items[-1], PositionTick):
            self._items[-1] = event

    def _evict_oldest_tick(self) -> None:
        for i, queued in enumerate(self._items):
            if isinstance(queued, PositionTick):
                del self._items[i]
                self.dropped_ticks += 1
                return
        logger.debug("Event channel over capacity with critical events only")

    def drain(self) -> list[BackendEvent]:
        """Take every queued event. The consumer clears the ready event."""
        items = list(self._items)
        self._items.clear()
        return items

    def __len__(self) -> int:
        return len(self._items)
