"""
Embedded backend.

Two in-process media elements (one per slot) feed a single sounddevice
output stream. Songs are downloaded with aiohttp and decoded with
soundfile; the audio callback reads from whichever element is active.
"""

import asyncio
import logging
import threading
from typing import Optional

import aiohttp
import numpy as np

from quaver.backends.base import PlaybackBackend
from quaver.backends.types import BackendInfo, clamp_speed, clamp_volume
from quaver.playback.models import PlayerSlot, Song

from .element import MediaElement
from .output import OutputDevice, OutputStream, resolve_output_device

logger = logging.getLogger(__name__)


class EmbeddedBackend(PlaybackBackend):
    """Local audio output using two decoded media elements."""

    def __init__(
        self,
        device: str = "default",
        buffer_size: int = 2048,
        tick_interval: float = 1.0,
        name: str = "Embedded Audio",
    ):
        super().__init__(name)
        self._device_config = device
        self._buffer_size = buffer_size
        self._tick_interval = tick_interval

        # Initialized in connect()
        self._device: Optional[OutputDevice] = None
        self._output: Optional[OutputStream] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._tick_task: Optional[asyncio.Task] = None

        # Shared with the audio thread, guarded by _lock
        self._lock = threading.Lock()
        self._elements: dict[PlayerSlot, Optional[MediaElement]] = {PlayerSlot.SLOT_A: None, PlayerSlot.SLOT_B: None}
        self._paused = True
        self._advanced: Optional[PlayerSlot] = None  # continued into by the callback
        self._finished: Optional[MediaElement] = None  # ended, already reported

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> bool:
        """Resolve the output device and prepare the stream."""
        try:
            self._device = resolve_output_device(self._device_config)
        except (ValueError, ImportError, OSError) as e:
            logger.error(f"Failed to initialize audio device: {e}")
            return False

        self.name = f"Embedded: {self._device.name}"
        self._output = OutputStream(self._device.index, self._pull, blocksize=self._buffer_size)
        self._session = aiohttp.ClientSession()
        self._tick_task = asyncio.create_task(self._tick_loop())
        self._is_connected = True
        logger.info(f"Audio output device: {self._device}")
        return True

    async def disconnect(self) -> None:
        await self.stop()
        if self._tick_task:
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
            self._tick_task = None
        if self._output:
            self._output.close()
            self._output = None
        if self._session:
            await self._session.close()
            self._session = None
        self._is_connected = False

    # =========================================================================
    # Slot Control
    # =========================================================================

    async def prime(self, slot: PlayerSlot, song: Song) -> None:
        if self._session is None:
            raise RuntimeError("embedded backend is not connected")
        if not song.stream_url:
            raise RuntimeError(f"Song {song.id} has no stream URL")

        element = await MediaElement.load(slot, song, self._session)
        with self._lock:
            self._elements[slot] = element
            if self._advanced is slot:
                self._advanced = None
        logger.debug(
            f"Primed {slot.name}: {song.name or song.id} "
            f"({element.sample_rate}Hz, {element.channels}ch, {element.total_frames} frames)"
        )

    async def activate(self, slot: PlayerSlot) -> None:
        with self._lock:
            element = self._elements[slot]
            if element is None:
                raise RuntimeError(f"{slot.name} is not primed")
            previous = self._active_slot
            if previous is not None and previous is not slot:
                self._elements[previous] = None
            self._advanced = None
            self._finished = None
            self._active_slot = slot
            self._paused = False

        self._output.ensure(element.sample_rate, element.channels)
        logger.info(f"Playing {slot.name}: {element.song.artist} - {element.song.name}")

    async def release(self, slot: PlayerSlot) -> None:
        with self._lock:
            self._elements[slot] = None
            if self._active_slot is slot:
                self._active_slot = None
                self._paused = True

    # =========================================================================
    # Transport
    # =========================================================================

    async def pause(self) -> None:
        with self._lock:
            self._paused = True

    async def resume(self) -> None:
        with self._lock:
            self._paused = False

    async def stop(self) -> None:
        with self._lock:
            self._elements = {PlayerSlot.SLOT_A: None, PlayerSlot.SLOT_B: None}
            self._active_slot = None
            self._advanced = None
            self._finished = None
            self._paused = True

    async def seek(self, seconds: float) -> None:
        element = self._active_element()
        if element is not None:
            element.seek(seconds)
            with self._lock:
                if self._finished is element and not element.exhausted:
                    self._finished = None

    async def set_volume(self, level: int) -> None:
        self._volume = clamp_volume(level)

    async def set_speed(self, speed: float) -> None:
        self._speed = clamp_speed(speed)

    def _active_element(self) -> Optional[MediaElement]:
        with self._lock:
            if self._active_slot is None:
                return None
            return self._elements[self._active_slot]

    # =========================================================================
    # Audio Thread
    # =========================================================================

    def _pull(self, frames: int, channels: int) -> Optional[np.ndarray]:
        """Produce the next block of output frames. Runs on the audio thread."""
        with self._lock:
            if self._paused or self._active_slot is None:
                return None
            element = self._elements[self._active_slot]
            if element is None or element is self._finished:
                return None

        out = np.zeros((frames, channels), dtype=np.float32)
        filled = self._copy_into(out, 0, element)
        if filled < frames:
            following = self._finish(element, channels)
            if following is not None:
                self._copy_into(out, filled, following)

        volume = self._volume / 100.0
        if volume < 1.0:
            out *= volume
        return out

    def _copy_into(self, out: np.ndarray, offset: int, element: MediaElement) -> int:
        data = element.read(len(out) - offset, self._speed)
        count = len(data)
        if count:
            width = min(data.shape[1], out.shape[1])
            if data.shape[1] == 1:
                out[offset : offset + count] = data
            else:
                out[offset : offset + count, :width] = data[:, :width]
        return offset + count

    def _finish(self, element: MediaElement, channels: int) -> Optional[MediaElement]:
        """
        Handle the end of the active element.

        Continues straight into the other slot when it is primed with the
        same format, so the handoff is gapless; the engine then only
        relabels the slots.
        """
        ended = element.slot
        following: Optional[MediaElement] = None
        with self._lock:
            candidate = self._elements[ended.other]
            if (
                candidate is not None
                and self._output is not None
                and candidate.sample_rate == element.sample_rate
                and candidate.channels == channels
            ):
                following = candidate
                self._elements[ended] = None
                self._active_slot = ended.other
                self._advanced = ended.other
            else:
                self._finished = element

        self._notify_track_ended(ended)
        return following

    # =========================================================================
    # Position
    # =========================================================================

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self._tick_interval)
            with self._lock:
                playing = not self._paused
            element = self._active_element()
            if playing and element is not None:
                self._notify_position_tick(element.position)

    # =========================================================================
    # Info
    # =========================================================================

    def get_info(self) -> BackendInfo:
        return BackendInfo(
            backend_type="embedded",
            name=self.name,
            device_id=f"embedded-{self._device_config}",
        )
