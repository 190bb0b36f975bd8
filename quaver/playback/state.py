"""
Player state snapshots and change notifications.

The engine hands listeners an immutable snapshot after every batch of
mutations, together with the set of things that changed.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from .models import (
    EngineState,
    PlayerSlot,
    PlayerStatus,
    QueueEntry,
    RepeatMode,
    ShuffleMode,
    Song,
)


class ChangeKind(Enum):
    """What changed in a batch of engine mutations."""

    SONG = "song"
    QUEUE = "queue"
    PLAYBACK = "playback"
    POSITION = "position"
    REPEAT = "repeat"
    SHUFFLE = "shuffle"
    VOLUME = "volume"
    SPEED = "speed"
    FAVORITE = "favorite"
    RATING = "rating"
    ERROR = "error"


@dataclass(frozen=True)
class PlayerSnapshot:
    """
    Read-only view of the player state.

    Built by the engine; consumers never see the live state object.
    """

    state: EngineState
    current_index: int
    current: Optional[QueueEntry]
    queue_length: int
    repeat: RepeatMode
    shuffle: ShuffleMode
    active_slot: PlayerSlot
    current_time: float
    volume: int
    speed: float
    error: Optional[str] = None

    @property
    def status(self) -> PlayerStatus:
        return self.state.status

    @property
    def song(self) -> Optional[Song]:
        return self.current.song if self.current else None

    def to_remote_dict(self) -> dict[str, Any]:
        """Convert to the remote protocol `state` payload."""
        return {
            "song": self.song.to_dict() if self.song else None,
            "status": self.status.value,
            "repeat": self.repeat.value,
            "shuffle": self.shuffle is ShuffleMode.TRACK,
            "volume": self.volume,
            "position": round(self.current_time, 3),
        }


@dataclass(frozen=True)
class StateChange:
    """Notification sent to listeners after a batch of mutations."""

    kinds: frozenset[ChangeKind]
    snapshot: PlayerSnapshot
    favorites: tuple[tuple[str, bool], ...] = field(default_factory=tuple)
    ratings: tuple[tuple[str, Optional[int]], ...] = field(default_factory=tuple)
    error: Optional[str] = None

    def __contains__(self, kind: ChangeKind) -> bool:
        return kind in self.kinds


# Listener callback; may be a plain function or a coroutine function
StateListener = Callable[[StateChange], Union[None, Awaitable[None]]]
