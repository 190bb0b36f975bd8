"""Embedded (in-process) playback backend."""

from .backend import EmbeddedBackend
from .element import MediaElement
from .output import OutputDevice, OutputStream, format_devices, list_output_devices, resolve_output_device

__all__ = [
    "EmbeddedBackend",
    "MediaElement",
    "OutputDevice",
    "OutputStream",
    "format_devices",
    "list_output_devices",
    "resolve_output_device",
]
