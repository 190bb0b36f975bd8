"""
Song and queue entry types.

Immutable value types shared by the queue, the engine, the backends and the
remote protocol.
"""

import uuid
from dataclasses import dataclass, fields, replace
from enum import Enum, IntEnum
from typing import Any, Optional


class RepeatMode(Enum):
    """Queue repeat modes."""

    NONE = "NONE"  # Stop after last track
    ALL = "ALL"  # Loop entire queue
    ONE = "ONE"  # Repeat current track on auto-advance

    def cycle(self) -> "RepeatMode":
        """Next mode in the NONE -> ALL -> ONE -> NONE cycle."""
        order = [RepeatMode.NONE, RepeatMode.ALL, RepeatMode.ONE]
        return order[(order.index(self) + 1) % len(order)]


class ShuffleMode(Enum):
    """Queue shuffle modes."""

    NONE = "NONE"
    TRACK = "TRACK"


class PlayerStatus(Enum):
    """Playback status as seen by remote subscribers."""

    PLAYING = "PLAYING"
    PAUSED = "PAUSED"


class EngineState(Enum):
    """Queue engine states."""

    EMPTY = "EMPTY"  # No entries
    STOPPED = "STOPPED"  # Entries and index set, nothing loaded audibly
    PLAYING = "PLAYING"
    PAUSED = "PAUSED"

    @property
    def status(self) -> PlayerStatus:
        return PlayerStatus.PLAYING if self is EngineState.PLAYING else PlayerStatus.PAUSED


class PlayerSlot(IntEnum):
    """The two playback handles used for gapless handoff."""

    SLOT_A = 0
    SLOT_B = 1

    @property
    def other(self) -> "PlayerSlot":
        return PlayerSlot.SLOT_B if self is PlayerSlot.SLOT_A else PlayerSlot.SLOT_A


class AddPosition(Enum):
    """Where added songs land in the queue."""

    NOW = "now"  # Replace the queue
    NEXT = "next"  # Right after the current entry
    LAST = "last"  # At the tail


# Song field name -> wire (camelCase) key
_WIRE_KEYS = {
    "id": "id",
    "server_id": "serverId",
    "name": "name",
    "artist": "artist",
    "album": "album",
    "duration": "duration",
    "bpm": "bpm",
    "user_favorite": "userFavorite",
    "user_rating": "userRating",
    "stream_url": "streamUrl",
    "image_url": "imageUrl",
    "gain": "gain",
    "peak": "peak",
    "item_type": "itemType",
}

# Numeric Song fields and their parsers; the Optional ones may be None
_NUMERIC_FIELDS = {"duration": float, "bpm": int, "user_rating": int, "gain": float, "peak": float}
_OPTIONAL_FIELDS = {"bpm", "user_rating", "gain", "peak"}


@dataclass(frozen=True)
class Song:
    """
    A playable song as returned by the media server.

    Attributes:
        id: Song id on the media server (may repeat within a queue)
        server_id: Id of the server the song belongs to
        duration: Length in seconds
        gain: Replay-gain track gain in dB
        peak: Replay-gain track peak
    """

    id: str
    server_id: str = ""
    name: str = ""
    artist: str = ""
    album: str = ""
    duration: float = 0.0
    bpm: Optional[int] = None
    user_favorite: bool = False
    user_rating: Optional[int] = None
    stream_url: str = ""
    image_url: str = ""
    gain: Optional[float] = None
    peak: Optional[float] = None
    item_type: str = "song"

    def to_dict(self) -> dict[str, Any]:
        """Convert to wire dictionary."""
        return {_WIRE_KEYS[f.name]: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Song":
        """
        Build from a wire dictionary, ignoring unknown keys.

        Raises:
            TypeError, ValueError: If a numeric field does not parse
        """
        kwargs = {}
        for attr, key in _WIRE_KEYS.items():
            if key not in data:
                continue
            value = data[key]
            parse = _NUMERIC_FIELDS.get(attr)
            if parse is not None and not (value is None and attr in _OPTIONAL_FIELDS):
                value = parse(value)
            kwargs[attr] = value
        kwargs["id"] = str(kwargs.get("id", ""))
        return cls(**kwargs)

    def with_changes(self, **changes: Any) -> "Song":
        return replace(self, **changes)


@dataclass(frozen=True)
class QueueEntry:
    """A song placed in the queue, unique by `unique_id`."""

    unique_id: str
    song: Song

    @classmethod
    def create(cls, song: Song) -> "QueueEntry":
        """Wrap a song with a freshly generated unique id."""
        return cls(unique_id=uuid.uuid4().hex, song=song)

    def to_dict(self) -> dict[str, Any]:
        return {"uniqueId": self.unique_id, "song": self.song.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueueEntry":
        return cls(unique_id=data["uniqueId"], song=Song.from_dict(data["song"]))
