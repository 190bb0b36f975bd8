"""Tests for the backend interface, registry and factory."""

from unittest.mock import AsyncMock, patch

import pytest

from quaver.backends import BackendFactory, BackendInfo, BackendNotFoundError, BackendRegistry, PlaybackBackend
from quaver.backends.mpv import MpvBackend
from quaver.backends.types import MAX_SPEED, MIN_SPEED, clamp_speed, clamp_volume
from quaver.config import Config
from quaver.playback.events import PlaybackError, PositionTick, TrackEnded
from quaver.playback.models import PlayerSlot


class TestClamping:
    """Tests for volume and speed limits."""

    def test_volume(self) -> None:
        """Test volume is kept within 0-100."""
        assert clamp_volume(-5) == 0
        assert clamp_volume(42) == 42
        assert clamp_volume(130) == 100

    def test_speed(self) -> None:
        """Test speed is kept within the supported range."""
        assert clamp_speed(0.0) == MIN_SPEED
        assert clamp_speed(1.25) == 1.25
        assert clamp_speed(10.0) == MAX_SPEED


class TestBackendInfo:
    """Tests for BackendInfo."""

    def test_str(self) -> None:
        """Test the description names type and name."""
        info = BackendInfo(backend_type="mpv", name="mpv", device_id="mpv-1")
        assert "mpv" in str(info)


class TestEventNotifications:
    """Tests for the event sink helpers on the base class."""

    def test_events_reach_sink(self, backend) -> None:
        """Test each helper emits its event type."""
        events: list = []
        backend.set_event_sink(events.append)
        backend._notify_position_tick(-1.0)
        backend._notify_track_ended(PlayerSlot.SLOT_B)
        backend._notify_playback_error("boom", PlayerSlot.SLOT_A)
        assert events == [
            PositionTick(0.0),
            TrackEnded(PlayerSlot.SLOT_B),
            PlaybackError("boom", PlayerSlot.SLOT_A),
        ]

    def test_no_sink(self, backend) -> None:
        """Test emitting without a sink is harmless."""
        backend.set_event_sink(None)
        backend._notify_track_ended(PlayerSlot.SLOT_A)


class TestBackendRegistry:
    """Tests for BackendRegistry."""

    def test_mpv_registered(self) -> None:
        """Test the mpv backend is always available."""
        assert BackendRegistry.get("mpv") is MpvBackend
        assert "mpv" in BackendFactory.list_available_backends()

    def test_unknown(self) -> None:
        """Test unknown types are not found."""
        assert BackendRegistry.get("bogus") is None

    def test_register_custom(self, backend) -> None:
        """Test custom backends can be registered."""
        BackendRegistry.register("fake", type(backend))
        try:
            assert BackendRegistry.get("fake") is type(backend)
        finally:
            BackendRegistry._backends.pop("fake", None)


class TestBackendFactory:
    """Tests for BackendFactory."""

    @pytest.mark.asyncio
    async def test_unknown_backend(self) -> None:
        """Test an unregistered type raises."""
        config = Config()
        config.player.backend = "bogus"
        with pytest.raises(BackendNotFoundError, match="not available"):
            await BackendFactory.create_from_config(config)

    @pytest.mark.asyncio
    async def test_creates_mpv_from_config(self) -> None:
        """Test mpv options and player levels are applied."""
        config = Config()
        config.mpv.path = "/opt/mpv"
        config.mpv.socket_path = "/tmp/quaver-factory.sock"
        config.player.volume = 70

        with (
            patch.object(MpvBackend, "connect", AsyncMock(return_value=True)),
            patch.object(MpvBackend, "set_volume", AsyncMock()) as set_volume,
            patch.object(MpvBackend, "set_speed", AsyncMock()) as set_speed,
        ):
            backend = await BackendFactory.create_from_config(config)

        assert isinstance(backend, MpvBackend)
        assert backend._process.executable == "/opt/mpv"
        assert backend._process.socket_path == "/tmp/quaver-factory.sock"
        set_volume.assert_awaited_once_with(70)
        set_speed.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_connect_failure(self) -> None:
        """Test a backend that fails to start is reported."""
        with patch.object(MpvBackend, "connect", AsyncMock(return_value=False)):
            with pytest.raises(BackendNotFoundError, match="Failed to start"):
                await BackendFactory.create_from_config(Config())

    def test_base_is_abstract(self) -> None:
        """Test the interface cannot be instantiated directly."""
        with pytest.raises(TypeError):
            PlaybackBackend()  # type: ignore[abstract]
