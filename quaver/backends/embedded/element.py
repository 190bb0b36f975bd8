"""
In-process media element.

Holds one decoded song and a playhead. The output callback reads from it
on the audio thread while the event loop seeks or replaces it, so every
access goes through a lock.
"""

import asyncio
import io
import logging
import threading
from typing import Optional

import aiohttp
import numpy as np

from quaver.playback.models import PlayerSlot, Song

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = 60


def _decode(data: bytes) -> tuple[np.ndarray, int]:
    import soundfile as sf

    samples, sample_rate = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
    return samples, sample_rate


def gain_factor(song: Song) -> float:
    """Linear replay-gain factor, limited so the peak does not clip."""
    if song.gain is None:
        return 1.0
    factor = 10 ** (song.gain / 20)
    if song.peak:
        factor = min(factor, 1.0 / song.peak)
    return factor


class MediaElement:
    """A decoded song loaded into one slot."""

    def __init__(self, slot: PlayerSlot, song: Song, samples: np.ndarray, sample_rate: int):
        self.slot = slot
        self.song = song
        self.sample_rate = sample_rate
        self.gain = gain_factor(song)
        self._samples = samples
        self._cursor = 0.0  # fractional frame position
        self._lock = threading.Lock()

    @classmethod
    async def load(cls, slot: PlayerSlot, song: Song, session: aiohttp.ClientSession) -> "MediaElement":
        """
        Download and decode a song.

        Raises:
            aiohttp.ClientError: On download failure
            RuntimeError: If the data cannot be decoded
        """
        timeout = aiohttp.ClientTimeout(total=DOWNLOAD_TIMEOUT)
        async with session.get(song.stream_url, timeout=timeout) as response:
            response.raise_for_status()
            data = await response.read()

        logger.debug(f"Downloaded {len(data)} bytes for {slot.name}, decoding...")
        loop = asyncio.get_running_loop()
        try:
            samples, sample_rate = await loop.run_in_executor(None, _decode, data)
        except Exception as e:
            raise RuntimeError(f"cannot decode {song.name or song.id}: {e}") from e
        return cls(slot, song, samples, sample_rate)

    @property
    def channels(self) -> int:
        return self._samples.shape[1]

    @property
    def total_frames(self) -> int:
        return len(self._samples)

    @property
    def position(self) -> float:
        """Playhead in seconds."""
        with self._lock:
            return self._cursor / self.sample_rate

    @property
    def exhausted(self) -> bool:
        with self._lock:
            return self._cursor >= self.total_frames

    def seek(self, seconds: float) -> None:
        with self._lock:
            self._cursor = min(max(0.0, seconds) * self.sample_rate, float(self.total_frames))

    def read(self, frames: int, speed: float = 1.0) -> np.ndarray:
        """
        Read up to `frames` output frames, advancing the playhead.

        At speeds other than 1.0 the source is resampled by linear
        interpolation, so pitch follows speed.
        """
        with self._lock:
            start = self._cursor
            remaining = self.total_frames - start
            if remaining <= 0:
                return np.zeros((0, self.channels), dtype=np.float32)

            if speed == 1.0:
                first = int(start)
                count = min(frames, self.total_frames - first)
                self._cursor = float(first + count)
                return self._samples[first : first + count] * self.gain

            count = min(frames, int(remaining / speed))
            if count <= 0:
                self._cursor = float(self.total_frames)
                return np.zeros((0, self.channels), dtype=np.float32)
            positions = start + np.arange(count) * speed
            lo = int(start)
            hi = min(self.total_frames, int(positions[-1]) + 2)
            base = np.arange(lo, hi)
            out = np.empty((count, self.channels), dtype=np.float32)
            for channel in range(self.channels):
                out[:, channel] = np.interp(positions, base, self._samples[lo:hi, channel])
            self._cursor = start + count * speed
            return out * self.gain
