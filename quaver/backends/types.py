"""
Audio backend types.
"""

from dataclasses import dataclass
from typing import Optional

# Limits shared by every backend
MIN_VOLUME = 0
MAX_VOLUME = 100
MIN_SPEED = 0.5
MAX_SPEED = 1.5


def clamp_volume(level: float) -> int:
    return int(max(MIN_VOLUME, min(MAX_VOLUME, level)))


def clamp_speed(speed: float) -> float:
    return max(MIN_SPEED, min(MAX_SPEED, float(speed)))


@dataclass
class BackendInfo:
    """
    Information about an audio backend.

    Used for logging and display purposes.
    """

    backend_type: str  # 'mpv', 'embedded'
    name: str  # Display name
    device_id: str  # Unique identifier
    version: Optional[str] = None

    def __str__(self) -> str:
        if self.version:
            return f"{self.name} ({self.backend_type} {self.version})"
        return f"{self.name} ({self.backend_type})"
