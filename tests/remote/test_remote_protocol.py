"""Tests for the remote control protocol."""

import base64
import json

import pytest

from quaver.playback.models import (
    EngineState,
    PlayerSlot,
    PlayerStatus,
    QueueEntry,
    RepeatMode,
    ShuffleMode,
    Song,
)
from quaver.playback.state import ChangeKind, PlayerSnapshot, StateChange
from quaver.remote.protocol import (
    ClientMessage,
    CloseCode,
    CloseKind,
    ProtocolError,
    ServerEvent,
    classify_close,
    decode_client_message,
    decode_server_event,
    events_for_change,
    playback_event,
    proxy_event,
    shuffle_event,
    state_event,
)


def _snapshot(song: Song = None, **overrides) -> PlayerSnapshot:
    values = dict(
        state=EngineState.PLAYING,
        current_index=0 if song else -1,
        current=QueueEntry("u1", song) if song else None,
        queue_length=1 if song else 0,
        repeat=RepeatMode.ALL,
        shuffle=ShuffleMode.TRACK,
        active_slot=PlayerSlot.SLOT_A,
        current_time=12.34567,
        volume=40,
        speed=1.0,
    )
    values.update(overrides)
    return PlayerSnapshot(**values)


class TestCloseCodes:
    """Tests for close code classification."""

    def test_values(self) -> None:
        """Test codes match the documented contract."""
        assert CloseCode.SERVER_SHUTDOWN == 4000
        assert CloseCode.SUPERSEDED == 4001
        assert CloseCode.AUTH_TIMEOUT == 4002
        assert CloseCode.AUTH_REJECTED == 4003

    @pytest.mark.parametrize(
        "code,natural,kind",
        [
            (4000, False, CloseKind.SHUTDOWN),
            (4001, False, CloseKind.NATURAL),
            (4002, False, CloseKind.RELOAD),
            (4003, False, CloseKind.RELOAD),
            (4003, True, CloseKind.RELOAD),
            (1000, True, CloseKind.NATURAL),
            (1006, False, CloseKind.UNEXPECTED),
            (None, False, CloseKind.UNEXPECTED),
        ],
    )
    def test_classify(self, code, natural, kind) -> None:
        """Test each code maps to the client reaction."""
        assert classify_close(code, natural=natural) is kind


class TestClientMessages:
    """Tests for decoding client frames."""

    def test_decode(self) -> None:
        """Test payload fields sit beside the event name."""
        message = decode_client_message('{"event": "seek", "position": 30}')
        assert message == ClientMessage("seek", {"position": 30})
        assert message.get("position") == 30
        assert message.get("missing", "x") == "x"

    def test_encode_flattens_payload(self) -> None:
        """Test encoding puts payload fields at the top level."""
        encoded = json.loads(ClientMessage("volume", {"volume": 10}).encode())
        assert encoded == {"event": "volume", "volume": 10}

    @pytest.mark.parametrize(
        "text",
        [
            "not json",
            "[1, 2, 3]",
            '{"position": 3}',
            '{"event": 5}',
            '{"event": "launch"}',
        ],
    )
    def test_decode_rejects(self, text) -> None:
        """Test malformed or unknown messages raise ProtocolError."""
        with pytest.raises(ProtocolError):
            decode_client_message(text)


class TestServerEvents:
    """Tests for server event encoding."""

    def test_compact_encoding(self) -> None:
        """Test events encode as compact event/data objects."""
        assert ServerEvent("volume", 5).encode() == '{"event":"volume","data":5}'

    def test_decode_server_event(self) -> None:
        """Test clients decode event and data."""
        assert decode_server_event('{"event":"position","data":1.5}') == ServerEvent("position", 1.5)
        with pytest.raises(ProtocolError):
            decode_server_event('{"data": 1}')

    def test_state_event(self) -> None:
        """Test the state payload carries the full remote view."""
        song = Song(id="s1", name="Song")
        data = state_event(_snapshot(song)).data
        assert data["song"]["id"] == "s1"
        assert data["status"] == "PLAYING"
        assert data["repeat"] == "ALL"
        assert data["shuffle"] is True
        assert data["volume"] == 40
        assert data["position"] == 12.346

    def test_state_event_empty(self) -> None:
        """Test an empty queue reports no song and paused."""
        data = state_event(_snapshot(state=EngineState.EMPTY)).data
        assert data["song"] is None
        assert data["status"] == "PAUSED"

    def test_small_builders(self) -> None:
        """Test single-value builders."""
        assert playback_event(PlayerStatus.PAUSED).data == "PAUSED"
        assert shuffle_event(ShuffleMode.NONE).data is False
        assert base64.b64decode(proxy_event(b"\x89PNG").data) == b"\x89PNG"


class TestEventsForChange:
    """Tests for translating engine changes into server events."""

    def test_song_change(self) -> None:
        """Test a new song sends song, playback and position in order."""
        change = StateChange(
            kinds=frozenset({ChangeKind.SONG, ChangeKind.PLAYBACK}),
            snapshot=_snapshot(Song(id="s1")),
        )
        assert [e.event for e in events_for_change(change)] == ["song", "playback", "position"]

    def test_position_only(self) -> None:
        """Test a tick sends only the position."""
        change = StateChange(kinds=frozenset({ChangeKind.POSITION}), snapshot=_snapshot(Song(id="s1")))
        assert events_for_change(change) == [ServerEvent("position", 12.346)]

    def test_modes_and_volume(self) -> None:
        """Test repeat, shuffle and volume changes."""
        change = StateChange(
            kinds=frozenset({ChangeKind.REPEAT, ChangeKind.SHUFFLE, ChangeKind.VOLUME}),
            snapshot=_snapshot(),
        )
        assert events_for_change(change) == [
            ServerEvent("repeat", "ALL"),
            ServerEvent("shuffle", True),
            ServerEvent("volume", 40),
        ]

    def test_annotations_and_error(self) -> None:
        """Test favorites, ratings and errors come last."""
        change = StateChange(
            kinds=frozenset({ChangeKind.FAVORITE, ChangeKind.RATING, ChangeKind.ERROR}),
            snapshot=_snapshot(),
            favorites=(("s1", True),),
            ratings=(("s1", 4), ("s2", None)),
            error="decoder failed",
        )
        assert events_for_change(change) == [
            ServerEvent("favorite", {"id": "s1", "favorite": True}),
            ServerEvent("rating", {"id": "s1", "rating": 4}),
            ServerEvent("rating", {"id": "s2", "rating": None}),
            ServerEvent("error", "decoder failed"),
        ]

    def test_queue_only_is_silent(self) -> None:
        """Test queue edits alone are not pushed."""
        change = StateChange(kinds=frozenset({ChangeKind.QUEUE}), snapshot=_snapshot())
        assert events_for_change(change) == []
