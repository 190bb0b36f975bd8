"""
Remote control protocol.

JSON envelopes exchanged over the remote WebSocket:

    client -> server: {"event": "<name>", ...payload fields}
    server -> client: {"event": "<name>", "data": <value>}

Close codes are part of the contract: clients decide whether to reload,
reconnect or warn the user based on them.
"""

import base64
import json
import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Optional

from quaver.playback.models import PlayerStatus, RepeatMode, ShuffleMode, Song
from quaver.playback.state import ChangeKind, PlayerSnapshot, StateChange

logger = logging.getLogger(__name__)


class CloseCode(IntEnum):
    """WebSocket close codes used by the remote server."""

    SERVER_SHUTDOWN = 4000  # Server going away; do not reconnect immediately
    SUPERSEDED = 4001  # Replaced by a newer connection; not an error
    AUTH_TIMEOUT = 4002  # No authenticate in time / protocol mismatch; reload
    AUTH_REJECTED = 4003  # Bad credentials; reload


class CloseKind(Enum):
    """How a client should treat a closed connection."""

    NATURAL = "natural"
    SHUTDOWN = "shutdown"
    RELOAD = "reload"
    UNEXPECTED = "unexpected"


def classify_close(code: Optional[int], natural: bool = False) -> CloseKind:
    """
    Classify a close code.

    Args:
        code: Close code received (None when the socket dropped)
        natural: True if this side initiated the close on purpose
    """
    if code in (CloseCode.AUTH_TIMEOUT, CloseCode.AUTH_REJECTED):
        return CloseKind.RELOAD
    if code == CloseCode.SERVER_SHUTDOWN:
        return CloseKind.SHUTDOWN
    if code == CloseCode.SUPERSEDED or natural:
        return CloseKind.NATURAL
    return CloseKind.UNEXPECTED


class ProtocolError(Exception):
    """Malformed remote message."""

    pass


# Client event names
AUTHENTICATE = "authenticate"
CLIENT_EVENTS = {
    AUTHENTICATE,
    "play",
    "pause",
    "playback",
    "next",
    "previous",
    "seek",
    "position",
    "volume",
    "repeat",
    "shuffle",
    "favorite",
    "rating",
    "proxy",
}


@dataclass(frozen=True)
class ClientMessage:
    """A decoded client event."""

    event: str
    payload: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)

    def encode(self) -> str:
        return json.dumps({"event": self.event, **self.payload})


@dataclass(frozen=True)
class ServerEvent:
    """An event pushed to subscribers."""

    event: str
    data: Any = None

    def encode(self) -> str:
        return json.dumps({"event": self.event, "data": self.data}, separators=(",", ":"))


def decode_client_message(text: str) -> ClientMessage:
    """
    Decode a client frame.

    Raises:
        ProtocolError: If the frame is not a JSON object with a known event
    """
    try:
        data = json.loads(text)
    except ValueError as e:
        raise ProtocolError(f"Invalid JSON: {e}")
    if not isinstance(data, dict):
        raise ProtocolError("Message must be a JSON object")

    event = data.pop("event", None)
    if not isinstance(event, str):
        raise ProtocolError("Message has no event")
    if event not in CLIENT_EVENTS:
        raise ProtocolError(f"Unknown event: {event}")
    return ClientMessage(event=event, payload=data)


def decode_server_event(text: str) -> ServerEvent:
    """
    Decode a server frame (client side).

    Raises:
        ProtocolError: If the frame is malformed
    """
    try:
        data = json.loads(text)
    except ValueError as e:
        raise ProtocolError(f"Invalid JSON: {e}")
    if not isinstance(data, dict) or not isinstance(data.get("event"), str):
        raise ProtocolError("Server message has no event")
    return ServerEvent(event=data["event"], data=data.get("data"))


# =============================================================================
# Server event builders
# =============================================================================


def error_event(message: str) -> ServerEvent:
    return ServerEvent("error", message)


def song_event(song: Optional[Song]) -> ServerEvent:
    return ServerEvent("song", song.to_dict() if song else None)


def state_event(snapshot: PlayerSnapshot) -> ServerEvent:
    return ServerEvent("state", snapshot.to_remote_dict())


def position_event(seconds: float) -> ServerEvent:
    return ServerEvent("position", round(seconds, 3))


def playback_event(status: PlayerStatus) -> ServerEvent:
    return ServerEvent("playback", status.value)


def favorite_event(song_id: str, favorite: bool) -> ServerEvent:
    return ServerEvent("favorite", {"id": song_id, "favorite": favorite})


def rating_event(song_id: str, rating: Optional[int]) -> ServerEvent:
    return ServerEvent("rating", {"id": song_id, "rating": rating})


def repeat_event(mode: RepeatMode) -> ServerEvent:
    return ServerEvent("repeat", mode.value)


def shuffle_event(mode: ShuffleMode) -> ServerEvent:
    return ServerEvent("shuffle", mode is ShuffleMode.TRACK)


def volume_event(level: int) -> ServerEvent:
    return ServerEvent("volume", level)


def proxy_event(image: bytes) -> ServerEvent:
    return ServerEvent("proxy", base64.b64encode(image).decode("ascii"))


def events_for_change(change: StateChange) -> list[ServerEvent]:
    """Translate an engine state change into server events."""
    snapshot = change.snapshot
    events: list[ServerEvent] = []

    if ChangeKind.SONG in change:
        events.append(song_event(snapshot.song))
    if ChangeKind.PLAYBACK in change:
        events.append(playback_event(snapshot.status))
    if ChangeKind.POSITION in change or ChangeKind.SONG in change:
        events.append(position_event(snapshot.current_time))
    if ChangeKind.REPEAT in change:
        events.append(repeat_event(snapshot.repeat))
    if ChangeKind.SHUFFLE in change:
        events.append(shuffle_event(snapshot.shuffle))
    if ChangeKind.VOLUME in change:
        events.append(volume_event(snapshot.volume))
    for song_id, favorite in change.favorites:
        events.append(favorite_event(song_id, favorite))
    for song_id, rating in change.ratings:
        events.append(rating_event(song_id, rating))
    if ChangeKind.ERROR in change and change.error:
        events.append(error_event(change.error))
    return events
