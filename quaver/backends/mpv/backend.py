"""
mpv backend.

Drives an external mpv process. The two slots map onto mpv's playlist: the
active slot is the playing entry, the other slot is the entry queued after
it so mpv can prefetch it and play it gaplessly.
"""

import asyncio
import logging
from typing import Any, Optional

from quaver.backends.base import PlaybackBackend
from quaver.backends.types import BackendInfo, clamp_speed, clamp_volume
from quaver.playback.models import PlayerSlot, Song

from .ipc import MpvIPC, MpvIPCError, MpvProcess

logger = logging.getLogger(__name__)

TIME_POS_OBSERVER = 1


class MpvBackend(PlaybackBackend):
    """Playback through an mpv child process over JSON IPC."""

    def __init__(
        self,
        executable: str = "mpv",
        socket_path: Optional[str] = None,
        extra_args: Optional[list[str]] = None,
        tick_interval: float = 1.0,
        name: str = "mpv",
    ):
        super().__init__(name)
        self._process = MpvProcess(executable, socket_path, extra_args)
        self._ipc = MpvIPC(self._process.socket_path, on_event=self._on_mpv_event)
        self._ipc.on_close = self._on_ipc_closed
        self._tick_interval = tick_interval
        self._version: Optional[str] = None

        # Slot state mirrored from mpv's playlist
        self._songs: dict[PlayerSlot, Optional[Song]] = {PlayerSlot.SLOT_A: None, PlayerSlot.SLOT_B: None}
        self._entry_ids: dict[int, PlayerSlot] = {}
        self._head: Optional[PlayerSlot] = None  # slot loaded at mpv's current position
        self._advanced: Optional[PlayerSlot] = None  # slot mpv moved to on its own
        self._last_tick: float = 0.0
        self._closing = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> bool:
        """Start mpv and connect to its IPC socket."""
        self._closing = False
        try:
            await self._process.start()
            await self._ipc.connect()
            await self._ipc.observe_property(TIME_POS_OBSERVER, "time-pos")
            await self._ipc.set_property("volume", self._volume)
            await self._ipc.set_property("speed", self._speed)
            self._version = await self._ipc.command("get_property", "mpv-version")
        except MpvIPCError as e:
            logger.error(f"Failed to start mpv: {e}")
            await self._process.terminate()
            return False

        self._is_connected = True
        logger.info(f"mpv backend ready ({self._version})")
        return True

    async def disconnect(self) -> None:
        self._closing = True
        if self._ipc.connected:
            try:
                await self._ipc.command("quit", wait=False)
            except MpvIPCError:
                pass
        await self._ipc.close()
        await self._process.terminate()
        self._is_connected = False
        self._reset()

    def _reset(self) -> None:
        self._songs = {PlayerSlot.SLOT_A: None, PlayerSlot.SLOT_B: None}
        self._entry_ids.clear()
        self._head = None
        self._advanced = None
        self._active_slot = None

    # =========================================================================
    # Slot Control
    # =========================================================================

    async def prime(self, slot: PlayerSlot, song: Song) -> None:
        if self._head is None or slot is self._head:
            # Nothing loaded yet: load paused at mpv's current position
            queued = self._songs[slot.other] if slot is self._head else None
            await self._ipc.set_property("pause", True)
            await self._load(slot, song, "replace")
            self._head = slot
            self._advanced = None
            if queued is not None:
                await self._load(slot.other, queued, "append")
        else:
            # Queue after the current entry, replacing whatever was queued
            await self._ipc.command("playlist-clear")
            self._forget_queued()
            await self._load(slot, song, "append")
        logger.debug(f"mpv primed {slot.name}: {song.name or song.id}")

    async def activate(self, slot: PlayerSlot) -> None:
        if self._songs[slot] is None:
            raise MpvIPCError(f"{slot.name} is not primed")

        if slot is self._advanced:
            # mpv already moved on to this entry when the last one ended
            self._advanced = None
        elif slot is not self._head:
            await self._ipc.command("playlist-next", "force")

        if self._head is not None and self._head is not slot:
            self._songs[self._head] = None
        self._head = slot
        self._active_slot = slot
        await self._ipc.set_property("pause", False)

    async def release(self, slot: PlayerSlot) -> None:
        if slot is self._head:
            if self._songs[slot] is not None:
                await self.stop()
            return
        if self._head is None:
            return
        # Also drops entries from a load that was cancelled before it was recorded
        await self._ipc.command("playlist-clear")
        self._forget_queued()

    async def _load(self, slot: PlayerSlot, song: Song, mode: str) -> None:
        if not song.stream_url:
            raise MpvIPCError(f"Song {song.id} has no stream URL")
        reply = await self._ipc.command("loadfile", song.stream_url, mode)
        self._songs[slot] = song
        if isinstance(reply, dict) and "playlist_entry_id" in reply:
            self._entry_ids[reply["playlist_entry_id"]] = slot

    def _forget_queued(self) -> None:
        for slot in PlayerSlot:
            if slot is not self._head:
                self._songs[slot] = None
        if self._advanced is not None and self._advanced is not self._head:
            self._advanced = None
        self._entry_ids = {k: v for k, v in self._entry_ids.items() if v is self._head}

    # =========================================================================
    # Transport
    # =========================================================================

    async def pause(self) -> None:
        await self._ipc.set_property("pause", True)

    async def resume(self) -> None:
        await self._ipc.set_property("pause", False)

    async def stop(self) -> None:
        if self._ipc.connected:
            await self._ipc.command("stop")
        self._reset()

    async def seek(self, seconds: float) -> None:
        await self._ipc.command("seek", max(0.0, seconds), "absolute", wait=False)

    async def set_volume(self, level: int) -> None:
        self._volume = clamp_volume(level)
        await self._ipc.set_property("volume", self._volume)

    async def set_speed(self, speed: float) -> None:
        self._speed = clamp_speed(speed)
        await self._ipc.set_property("speed", self._speed)

    # =========================================================================
    # mpv Events
    # =========================================================================

    def _on_mpv_event(self, message: dict[str, Any]) -> None:
        event = message.get("event")
        if event == "property-change" and message.get("id") == TIME_POS_OBSERVER:
            self._on_time_pos(message.get("data"))
        elif event == "end-file":
            self._on_end_file(message)

    def _on_time_pos(self, value: Optional[float]) -> None:
        if value is None or self._active_slot is None:
            return
        loop_time = asyncio.get_running_loop().time()
        if loop_time - self._last_tick < self._tick_interval:
            return
        self._last_tick = loop_time
        self._notify_position_tick(float(value))

    def _on_end_file(self, message: dict[str, Any]) -> None:
        reason = message.get("reason")
        slot = self._entry_ids.pop(message.get("playlist_entry_id", -1), self._head)
        if slot is None:
            return

        if reason == "eof":
            queued = slot.other
            if slot is self._head and self._songs[queued] is not None:
                # mpv continues with the queued entry by itself
                self._advanced = queued
            logger.debug(f"mpv finished {slot.name}")
            self._notify_track_ended(slot)
        elif reason == "error":
            error = message.get("file_error", "unknown error")
            self._notify_playback_error(f"mpv could not play file: {error}", slot)

    def _on_ipc_closed(self) -> None:
        was_connected = self._is_connected
        self._is_connected = False
        if was_connected and not self._closing:
            self._notify_playback_error("mpv exited unexpectedly", self._active_slot)

    # =========================================================================
    # Info
    # =========================================================================

    def get_info(self) -> BackendInfo:
        return BackendInfo(
            backend_type="mpv",
            name=self.name,
            device_id=f"mpv-{self._process.socket_path}",
            version=self._version,
        )
