"""Shared fixtures: an in-memory playback backend and a running queue engine."""

import random
from typing import AsyncIterator, Optional

import pytest

from quaver.backends.base import PlaybackBackend
from quaver.backends.types import BackendInfo
from quaver.playback.engine import QueueEngine
from quaver.playback.models import PlayerSlot, Song


class FakeBackend(PlaybackBackend):
    """Backend that records slot commands instead of playing audio."""

    def __init__(self) -> None:
        super().__init__("Fake Backend")
        self.calls: list[tuple] = []
        self.slots: dict[PlayerSlot, Optional[Song]] = {PlayerSlot.SLOT_A: None, PlayerSlot.SLOT_B: None}
        self.paused = True
        self.position = 0.0
        self.fail_on: set[str] = set()

    def _record(self, name: str, *args: object) -> None:
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise RuntimeError(f"{name} exploded")

    def call_names(self) -> list[str]:
        return [c[0] for c in self.calls]

    async def prime(self, slot: PlayerSlot, song: Song) -> None:
        self._record("prime", slot, song.id)
        self.slots[slot] = song

    async def activate(self, slot: PlayerSlot) -> None:
        self._record("activate", slot)
        if self.slots[slot] is None:
            raise RuntimeError(f"{slot.name} is not primed")
        if self._active_slot is not None and self._active_slot is not slot:
            self.slots[self._active_slot] = None
        self._active_slot = slot
        self.paused = False
        self.position = 0.0

    async def release(self, slot: PlayerSlot) -> None:
        self._record("release", slot)
        self.slots[slot] = None

    async def pause(self) -> None:
        self._record("pause")
        self.paused = True

    async def resume(self) -> None:
        self._record("resume")
        self.paused = False

    async def stop(self) -> None:
        self._record("stop")
        self.slots = {PlayerSlot.SLOT_A: None, PlayerSlot.SLOT_B: None}
        self._active_slot = None
        self.paused = True

    async def seek(self, seconds: float) -> None:
        self._record("seek", seconds)
        self.position = seconds

    async def set_volume(self, level: int) -> None:
        self._record("set_volume", level)
        self._volume = level

    async def set_speed(self, speed: float) -> None:
        self._record("set_speed", speed)
        self._speed = speed

    async def connect(self) -> bool:
        self._is_connected = True
        return True

    async def disconnect(self) -> None:
        self._is_connected = False

    # Event helpers used by tests

    def end_track(self, slot: Optional[PlayerSlot] = None) -> None:
        self._notify_track_ended(slot if slot is not None else self._active_slot)

    def tick(self, seconds: float) -> None:
        self._notify_position_tick(seconds)

    def fail(self, message: str, slot: Optional[PlayerSlot] = None) -> None:
        self._notify_playback_error(message, slot)

    def get_info(self) -> BackendInfo:
        return BackendInfo(backend_type="fake", name=self.name, device_id="fake-0")


def make_songs(*names: str, duration: float = 200.0) -> list[Song]:
    """Songs whose id and name are the given strings."""
    return [
        Song(id=name, name=name, artist="Artist", album="Album", duration=duration, stream_url=f"http://x/{name}")
        for name in names
    ]


@pytest.fixture
def backend() -> FakeBackend:
    """Create a fake backend."""
    return FakeBackend()


@pytest.fixture
async def engine(backend: FakeBackend) -> AsyncIterator[QueueEngine]:
    """Create a started engine on the fake backend."""
    eng = QueueEngine(backend, autoplay=True, rng=random.Random(7))
    await eng.start()
    yield eng
    await eng.shutdown()


@pytest.fixture
def songs() -> list[Song]:
    """Five songs A..E."""
    return make_songs("A", "B", "C", "D", "E")


@pytest.fixture
def song_factory():
    """The make_songs helper, for tests that need their own songs."""
    return make_songs
