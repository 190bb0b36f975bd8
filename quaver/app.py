"""
Quaver Application.

Main orchestrator that wires together all components and manages lifecycle.
"""

import asyncio
import logging
import signal
from typing import Optional

from quaver.api import ServerAPIError, SubsonicClient, is_cancellation
from quaver.backends import BackendFactory, PlaybackBackend
from quaver.config import Config
from quaver.playback import AddPosition, ChangeKind, QueueEngine, QueueStore, Scrobbler, StateChange
from quaver.remote import RemoteCommandHandler, RemoteServer

logger = logging.getLogger(__name__)


class Quaver:
    """
    Main Quaver application.

    Orchestrates all components:
    - Playback backend (mpv or embedded)
    - Queue engine and queue persistence
    - Media server client and scrobbler
    - Remote control server

    Usage:
        config = load_config(...)
        app = Quaver(config)
        await app.run()
    """

    def __init__(self, config: Config, query: Optional[str] = None):
        """
        Initialize Quaver.

        Args:
            config: Validated configuration
            query: Optional search text; matching songs are queued on startup
        """
        self._config = config
        self._query = query
        self._is_running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self._backend: Optional[PlaybackBackend] = None
        self._engine: Optional[QueueEngine] = None
        self._store = QueueStore(config.player.queue_path or None)
        self._api_client: Optional[SubsonicClient] = None
        self._scrobbler: Optional[Scrobbler] = None
        self._remote: Optional[RemoteServer] = None

    @property
    def engine(self) -> Optional[QueueEngine]:
        return self._engine

    async def start(self) -> None:
        """
        Start Quaver and all components.

        Startup order:
        1. Media server client (when configured)
        2. Playback backend
        3. Queue engine, restoring the saved queue when resuming
        4. Scrobbler
        5. Remote control server
        6. Initial query

        Raises:
            ServerAPIError: If the media server rejects the credentials
            BackendNotFoundError: If the backend cannot be started
            OSError: If the remote server cannot bind
        """
        logger.info("Starting Quaver...")

        # 1. Media server client
        if self._config.server.url:
            logger.info(f"Connecting to media server {self._config.server.url} as {self._config.server.username}...")
            self._api_client = SubsonicClient(
                base_url=self._config.server.url,
                username=self._config.server.username,
                password=self._config.server.password,
                client_name=self._config.server.client_name,
            )
            if not await self._api_client.ping():
                await self._api_client.close()
                self._api_client = None
                raise ServerAPIError("Media server rejected the connection - check URL and credentials")
            logger.info("Media server connection successful")

        # 2. Playback backend
        logger.debug("Creating playback backend...")
        self._backend = await BackendFactory.create_from_config(self._config)
        logger.info(f"Connected to backend: {self._backend.name}")

        # 3. Queue engine
        self._engine = QueueEngine(self._backend, autoplay=self._config.player.autoplay)
        self._engine.add_listener(self._on_state_change)
        await self._engine.start()
        await self._engine.set_volume(self._config.player.volume)
        await self._engine.set_speed(self._config.player.speed)

        if self._config.player.resume:
            data = self._store.load()
            if data and await self._engine.restore(data):
                logger.info(f"Resumed queue from {self._store.path}")

        # 4. Scrobbler
        if self._api_client:
            self._scrobbler = Scrobbler(self._api_client)
            self._engine.add_listener(self._scrobbler)

        # 5. Remote control server
        if self._config.remote.enabled:
            handler = RemoteCommandHandler(self._engine, self._api_client)
            self._remote = RemoteServer(self._engine, self._config.remote, handler)
            await self._remote.start()

        self._is_running = True
        logger.info("Quaver ready")

        # 6. Initial query
        if self._query:
            await self.enqueue_query(self._query)

    async def enqueue_query(self, query: str) -> int:
        """
        Search the media server and queue the results.

        Returns:
            Number of songs queued
        """
        if not self._api_client or not self._engine:
            logger.warning("Cannot search: no media server configured")
            return 0

        try:
            songs = await self._api_client.fetch_songs(query)
        except ServerAPIError as e:
            if is_cancellation(e):
                logger.debug(f"Search cancelled: {query}")
                return 0
            logger.error(f"Search failed: {e}")
            return 0

        if not songs:
            logger.info(f"No songs found for '{query}'")
            return 0

        await self._engine.add(songs, AddPosition.LAST)
        logger.info(f"Queued {len(songs)} songs for '{query}'")
        return len(songs)

    def _on_state_change(self, change: StateChange) -> None:
        """Log playback transitions."""
        if change.error:
            logger.warning(f"Playback error: {change.error}")
        if ChangeKind.SONG in change and change.snapshot.song:
            song = change.snapshot.song
            logger.info(f"Now {change.snapshot.state.value.lower()}: {song.artist} - {song.name}")

    async def stop(self) -> None:
        """
        Stop Quaver and all components.

        Shutdown order (reverse of startup):
        1. Stop remote server
        2. Save queue and stop engine
        3. Flush scrobbler
        4. Close media server client
        5. Disconnect backend
        """
        if not self._is_running and self._backend is None and self._api_client is None:
            return

        logger.info("Stopping Quaver...")
        self._is_running = False

        # 1. Stop remote server
        if self._remote:
            try:
                await self._remote.stop()
            except Exception as e:
                logger.warning(f"Error stopping remote server: {e}")
            self._remote = None

        # 2. Save queue and stop engine
        if self._engine:
            try:
                await self._engine.flush()
                self._store.save(self._engine.export_state())
            except Exception as e:
                logger.warning(f"Error saving queue: {e}")
            await self._engine.shutdown()

        # 3. Flush scrobbler
        if self._scrobbler:
            await self._scrobbler.close()
            self._scrobbler = None

        # 4. Close media server client
        if self._api_client:
            await self._api_client.close()
            self._api_client = None

        # 5. Disconnect backend
        if self._backend:
            try:
                await self._backend.disconnect()
            except Exception as e:
                logger.warning(f"Error disconnecting backend: {e}")
            self._backend = None

        logger.info("Quaver stopped")

    async def run(self) -> None:
        """
        Run Quaver until interrupted.

        Sets up signal handlers for graceful shutdown on SIGINT/SIGTERM.
        """
        loop = asyncio.get_running_loop()

        def handle_signal() -> None:
            logger.info("Shutdown signal received")
            self._shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, handle_signal)

        try:
            await self.start()

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        finally:
            await self.stop()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        """Check if the application is running."""
        return self._is_running
