"""Tests for application wiring and lifecycle."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from quaver.api import ServerAPIError
from quaver.app import Quaver
from quaver.config import Config
from quaver.playback.models import EngineState
from quaver.playback.persistence import QueueStore

FACTORY = "quaver.app.BackendFactory.create_from_config"


def _config(tmp_path: Path, **player) -> Config:
    config = Config()
    config.remote.enabled = False
    config.player.queue_path = str(tmp_path / "queue.bin")
    for key, value in player.items():
        setattr(config.player, key, value)
    return config


@pytest.fixture
def api(songs) -> MagicMock:
    """Media server client mock."""
    mock = MagicMock()
    mock.ping = AsyncMock(return_value=True)
    mock.fetch_songs = AsyncMock(return_value=songs[:3])
    mock.scrobble = AsyncMock()
    mock.close = AsyncMock()
    return mock


class TestLifecycle:
    """Tests for start and stop."""

    @pytest.mark.asyncio
    async def test_start_applies_player_levels(self, tmp_path, backend) -> None:
        """Test the engine starts with the configured volume."""
        config = _config(tmp_path, volume=30)
        app = Quaver(config)
        with patch(FACTORY, AsyncMock(return_value=backend)):
            await app.start()
        try:
            assert app.is_running
            assert app.engine.snapshot().volume == 30
            assert ("set_volume", 30) in backend.calls
        finally:
            await app.stop()
        assert not app.is_running
        assert backend.is_connected() is False

    @pytest.mark.asyncio
    async def test_stop_twice(self, tmp_path, backend) -> None:
        """Test stopping again is a no-op."""
        app = Quaver(_config(tmp_path))
        with patch(FACTORY, AsyncMock(return_value=backend)):
            await app.start()
        await app.stop()
        await app.stop()

    @pytest.mark.asyncio
    async def test_queue_saved_and_resumed(self, tmp_path, backend, songs) -> None:
        """Test the queue survives a restart when resuming."""
        first = Quaver(_config(tmp_path))
        with patch(FACTORY, AsyncMock(return_value=backend)):
            await first.start()
            await first.engine.add(songs[:3])
            await first.engine.next()
            await first.stop()

        assert (tmp_path / "queue.bin").exists()

        second = Quaver(_config(tmp_path, resume=True))
        with patch(FACTORY, AsyncMock(return_value=backend)):
            await second.start()
        try:
            assert [e.song.id for e in second.engine.entries] == ["A", "B", "C"]
            assert second.engine.current_index == 1
            assert second.engine.state is not EngineState.PLAYING
        finally:
            await second.stop()

    @pytest.mark.asyncio
    async def test_damaged_saved_queue(self, tmp_path, backend, songs) -> None:
        """Test an unreadable saved queue is skipped at startup."""
        first = Quaver(_config(tmp_path))
        with patch(FACTORY, AsyncMock(return_value=backend)):
            await first.start()
            await first.engine.add(songs[:3])
            data = first.engine.export_state()
            await first.stop()

        data["volume"] = "loud"
        QueueStore(tmp_path / "queue.bin").save(data)

        second = Quaver(_config(tmp_path, resume=True, volume=40))
        with patch(FACTORY, AsyncMock(return_value=backend)):
            await second.start()
        try:
            assert second.is_running
            assert second.engine.state is EngineState.EMPTY
            assert second.engine.snapshot().volume == 40
            await second.engine.add(songs[:1])
            assert second.engine.state is EngineState.PLAYING
        finally:
            await second.stop()

    @pytest.mark.asyncio
    async def test_no_resume_starts_empty(self, tmp_path, backend, songs) -> None:
        """Test a saved queue is ignored unless resuming."""
        first = Quaver(_config(tmp_path))
        with patch(FACTORY, AsyncMock(return_value=backend)):
            await first.start()
            await first.engine.add(songs[:2])
            await first.stop()

            second = Quaver(_config(tmp_path))
            await second.start()
        try:
            assert second.engine.state is EngineState.EMPTY
        finally:
            await second.stop()

    @pytest.mark.asyncio
    async def test_remote_server_started(self, tmp_path, backend) -> None:
        """Test the remote server listens when enabled."""
        config = _config(tmp_path)
        config.remote.enabled = True
        config.remote.host = "127.0.0.1"
        config.remote.port = 0
        app = Quaver(config)
        with patch(FACTORY, AsyncMock(return_value=backend)):
            await app.start()
        try:
            assert app._remote is not None
            assert app._remote.is_running
        finally:
            await app.stop()
        assert app._remote is None


class TestMediaServer:
    """Tests for media server wiring."""

    @pytest.mark.asyncio
    async def test_rejected_credentials(self, tmp_path, backend, api) -> None:
        """Test a failed ping aborts startup before the backend is created."""
        api.ping.return_value = False
        config = _config(tmp_path)
        config.server.url = "https://music.example.com"
        config.server.username = "me"
        factory = AsyncMock(return_value=backend)
        with patch("quaver.app.SubsonicClient", return_value=api), patch(FACTORY, factory):
            with pytest.raises(ServerAPIError):
                await Quaver(config).start()
        factory.assert_not_awaited()
        api.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_query_queues_results(self, tmp_path, backend, api) -> None:
        """Test the startup query is searched and queued."""
        config = _config(tmp_path)
        config.server.url = "https://music.example.com"
        config.server.username = "me"
        app = Quaver(config, query="miles davis")
        with patch("quaver.app.SubsonicClient", return_value=api), patch(FACTORY, AsyncMock(return_value=backend)):
            await app.start()
        try:
            api.fetch_songs.assert_awaited_once_with("miles davis")
            assert [e.song.id for e in app.engine.entries] == ["A", "B", "C"]
            assert app.engine.state is EngineState.PLAYING
        finally:
            await app.stop()
        api.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_query_without_server(self, tmp_path, backend) -> None:
        """Test a query without a media server queues nothing."""
        app = Quaver(_config(tmp_path))
        with patch(FACTORY, AsyncMock(return_value=backend)):
            await app.start()
        try:
            assert await app.enqueue_query("anything") == 0
        finally:
            await app.stop()
