"""
Quaver - Headless music player service.

Streams from Subsonic-compatible servers and exposes a WebSocket remote control.
"""

__version__ = "0.1.0"

from .app import Quaver
from .config import Config, load_config, ConfigError

__all__ = [
    "__version__",
    "Quaver",
    "Config",
    "load_config",
    "ConfigError",
]
