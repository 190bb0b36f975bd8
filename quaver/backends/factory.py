"""
Backend factory and registry.

Provides factory methods to instantiate backends by type name.
"""

import logging
from typing import Optional, TYPE_CHECKING

from .base import PlaybackBackend
from .mpv import MpvBackend

if TYPE_CHECKING:
    from quaver.config import Config

logger = logging.getLogger(__name__)


class BackendNotFoundError(Exception):
    """Raised when requested backend type is not available."""

    pass


class BackendRegistry:
    """
    Registry of available backend types.

    Backends register themselves here with their type name.
    Factory uses this to instantiate backends.
    """

    _backends: dict[str, type[PlaybackBackend]] = {}

    @classmethod
    def register(cls, type_name: str, backend_class: type[PlaybackBackend]) -> None:
        cls._backends[type_name] = backend_class
        logger.debug(f"Registered backend type: {type_name}")

    @classmethod
    def get(cls, type_name: str) -> Optional[type[PlaybackBackend]]:
        return cls._backends.get(type_name)

    @classmethod
    def available_types(cls) -> list[str]:
        return list(cls._backends.keys())


class BackendFactory:
    """
    Factory for creating playback backend instances.

    Usage:
        backend = await BackendFactory.create_from_config(config)
    """

    @classmethod
    async def create_from_config(cls, config: "Config") -> PlaybackBackend:
        """
        Create and connect the backend selected in the configuration.

        Raises:
            BackendNotFoundError: If the type is unknown or fails to start
        """
        backend_type = config.player.backend

        if not BackendRegistry.get(backend_type):
            available = BackendRegistry.available_types()
            raise BackendNotFoundError(
                f"Backend type '{backend_type}' not available. Available types: {available}"
            )

        if backend_type == "mpv":
            backend: PlaybackBackend = MpvBackend(
                executable=config.mpv.path,
                socket_path=config.mpv.socket_path or None,
                extra_args=config.mpv.extra_args,
                tick_interval=config.mpv.tick_interval,
            )
        elif backend_type == "embedded":
            backend = BackendRegistry.get("embedded")(
                device=config.embedded.device,
                buffer_size=config.embedded.buffer_size,
            )
        else:
            backend = BackendRegistry.get(backend_type)(name=f"{backend_type} Backend")

        if not await backend.connect():
            raise BackendNotFoundError(f"Failed to start {backend_type} backend")
        await backend.set_volume(config.player.volume)
        await backend.set_speed(config.player.speed)
        logger.info(f"Using backend: {backend.get_info()}")
        return backend

    @classmethod
    def list_available_backends(cls) -> list[str]:
        return BackendRegistry.available_types()


# Register backends
BackendRegistry.register("mpv", MpvBackend)
try:
    from .embedded import EmbeddedBackend

    BackendRegistry.register("embedded", EmbeddedBackend)
except (ImportError, OSError) as e:
    logger.debug(f"Embedded backend unavailable: {e}")
