"""
Audio output for the embedded backend.

Resolves the configured output device and wraps a sounddevice
OutputStream whose callback pulls frames from a source function.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np

logger = logging.getLogger(__name__)

# Fills `frames` rows of output; returns None for silence
FrameSource = Callable[[int, int], Optional[np.ndarray]]


@dataclass
class OutputDevice:
    """An audio output device."""

    index: int
    name: str
    channels: int
    default_samplerate: float
    is_default: bool

    def __str__(self) -> str:
        marker = " (default)" if self.is_default else ""
        return f"[{self.index}] {self.name}{marker} - {self.channels}ch, {int(self.default_samplerate)}Hz"


def list_output_devices() -> list[OutputDevice]:
    """Output-capable devices known to PortAudio."""
    import sounddevice as sd

    default_output = sd.default.device[1]
    return [
        OutputDevice(
            index=i,
            name=dev["name"],
            channels=dev["max_output_channels"],
            default_samplerate=dev["default_samplerate"],
            is_default=(i == default_output),
        )
        for i, dev in enumerate(sd.query_devices())
        if dev["max_output_channels"] > 0
    ]


def resolve_output_device(selector: str, devices: Optional[list[OutputDevice]] = None) -> OutputDevice:
    """
    Pick a device from "default", an index, or a (partial) name.

    Raises:
        ValueError: If nothing matches
    """
    if devices is None:
        devices = list_output_devices()
    if not devices:
        raise ValueError("No audio output devices found")

    if selector.lower() == "default":
        for dev in devices:
            if dev.is_default:
                return dev
        logger.warning("No default output device, using first available")
        return devices[0]

    if selector.isdigit():
        for dev in devices:
            if dev.index == int(selector):
                return dev
        raise ValueError(f"No audio output device at index {selector}:\n{format_devices(devices)}")

    wanted = selector.lower()
    exact = [d for d in devices if d.name.lower() == wanted]
    partial = [d for d in devices if wanted in d.name.lower()]
    for candidates in (exact, partial):
        if candidates:
            if len(candidates) > 1:
                logger.warning(f"Several devices match '{selector}', using {candidates[0].name}")
            return candidates[0]
    raise ValueError(f"No audio output device matching '{selector}':\n{format_devices(devices)}")


def format_devices(devices: Optional[list[OutputDevice]] = None) -> str:
    if devices is None:
        devices = list_output_devices()
    return "\n".join(f"  {dev}" for dev in devices)


class OutputStream:
    """
    sounddevice OutputStream fed by a frame source.

    The stream is reopened when the sample rate or channel count of the
    audible media changes.
    """

    def __init__(self, device_index: int, source: FrameSource, blocksize: int = 2048):
        self._device_index = device_index
        self._source = source
        self._blocksize = blocksize
        self._stream: Any = None
        self._sample_rate = 0
        self._channels = 0
        self.underruns = 0

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def ensure(self, sample_rate: int, channels: int) -> None:
        """Open the stream for a format, reopening when it differs."""
        import sounddevice as sd

        if self._stream is not None:
            if (self._sample_rate, self._channels) == (sample_rate, channels):
                return
            self.close()

        self._stream = sd.OutputStream(
            device=self._device_index,
            samplerate=sample_rate,
            channels=channels,
            dtype="float32",
            blocksize=self._blocksize,
            callback=self._callback,
        )
        self._sample_rate = sample_rate
        self._channels = channels
        self._stream.start()
        logger.debug(f"Output stream opened: {sample_rate}Hz, {channels}ch")

    def close(self) -> None:
        if self._stream is None:
            return
        try:
            self._stream.stop()
            self._stream.close()
        except Exception as e:
            logger.warning(f"Error closing output stream: {e}")
        self._stream = None
        self._sample_rate = 0
        self._channels = 0

    def _callback(self, outdata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:
        if status:
            self.underruns += 1
            if self.underruns % 10 == 1:
                logger.warning(f"Output stream status: {status} (count: {self.underruns})")

        data = self._source(frames, self._channels)
        if data is None:
            outdata[:] = 0
        else:
            outdata[:] = data
