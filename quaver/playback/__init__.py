"""Playback queue, engine and persistence."""

from .engine import QueueEngine
from .events import BackendEvent, EventChannel, PlaybackError, PositionTick, TrackEnded
from .models import (
    AddPosition,
    EngineState,
    PlayerSlot,
    PlayerStatus,
    QueueEntry,
    RepeatMode,
    ShuffleMode,
    Song,
)
from .persistence import QueueStore
from .queue import PlayQueue
from .scrobbler import Scrobbler
from .state import ChangeKind, PlayerSnapshot, StateChange

__all__ = [
    "AddPosition",
    "BackendEvent",
    "ChangeKind",
    "EngineState",
    "EventChannel",
    "PlayQueue",
    "PlaybackError",
    "PlayerSlot",
    "PlayerSnapshot",
    "PlayerStatus",
    "PositionTick",
    "QueueEngine",
    "QueueEntry",
    "QueueStore",
    "RepeatMode",
    "Scrobbler",
    "ShuffleMode",
    "Song",
    "StateChange",
    "TrackEnded",
]
