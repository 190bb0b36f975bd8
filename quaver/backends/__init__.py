"""
Playback backends module.

Provides the abstract slot-based interface and the factory for playback
backends.
"""

from .base import EventSink, PlaybackBackend
from .factory import (
    BackendFactory,
    BackendNotFoundError,
    BackendRegistry,
)
from .types import (
    MAX_SPEED,
    MAX_VOLUME,
    MIN_SPEED,
    MIN_VOLUME,
    BackendInfo,
    clamp_speed,
    clamp_volume,
)

__all__ = [
    # Types
    "BackendInfo",
    "MAX_SPEED",
    "MAX_VOLUME",
    "MIN_SPEED",
    "MIN_VOLUME",
    "clamp_speed",
    "clamp_volume",
    # Base class
    "EventSink",
    "PlaybackBackend",
    # Factory
    "BackendFactory",
    "BackendNotFoundError",
    "BackendRegistry",
]
