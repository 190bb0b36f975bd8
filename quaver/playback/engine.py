"""
Quaver queue engine.

Single-writer controller that owns the queue, the repeat and shuffle modes
and the two player slots. Every mutation, whether it comes from the local
command line, a remote session or a backend event, is applied by one loop.
"""

import asyncio
import inspect
import logging
import random
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional, TYPE_CHECKING

from quaver.backends.types import clamp_speed, clamp_volume

from .events import (
    DEFAULT_CHANNEL_CAPACITY,
    BackendEvent,
    EventChannel,
    PlaybackError,
    PositionTick,
    SlotPrimed,
    TrackEnded,
)
from .models import (
    AddPosition,
    EngineState,
    PlayerSlot,
    QueueEntry,
    RepeatMode,
    ShuffleMode,
    Song,
)
from .queue import PlayQueue
from .state import ChangeKind, PlayerSnapshot, StateChange, StateListener

if TYPE_CHECKING:
    from quaver.backends.base import PlaybackBackend

logger = logging.getLogger(__name__)

# Version tag of the dictionary produced by export_state()
SNAPSHOT_VERSION = 1


@dataclass
class _Command:
    """A mutation waiting for the engine loop."""

    name: str
    handler: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    navigation: bool = False


@dataclass
class _Batch:
    """Bookkeeping collected while one batch is applied."""

    kinds: set[ChangeKind] = field(default_factory=set)
    favorites: list[tuple[str, bool]] = field(default_factory=list)
    ratings: list[tuple[str, Optional[int]]] = field(default_factory=list)
    song_restarted: bool = False
    error: Optional[str] = None


@dataclass
class _PendingPrime:
    """A sibling load running outside the engine loop."""

    slot: PlayerSlot
    unique_id: str
    task: asyncio.Task


class QueueEngine:
    """
    Playback queue state machine.

    States:
        EMPTY -> PLAYING or STOPPED (on first add, depending on autoplay)
        STOPPED/PAUSED -> PLAYING (on play)
        PLAYING -> PAUSED (on pause or backend error)
        PLAYING -> STOPPED (on track end at the last entry, repeat NONE)
        any -> EMPTY (on clear or removing every entry)

    Public methods enqueue a command and wait for the loop to apply it.
    Commands submitted before the loop wakes up are applied as one batch;
    listeners hear about a batch once. Within a batch only the first
    navigation command that moves the current entry is applied, later ones
    resolve to False.

    The upcoming entry is loaded into the sibling slot by a background task,
    so commands never wait on it. The load reports back through the event
    channel and is only recorded if the sibling still wants that entry.
    """

    def __init__(
        self,
        backend: "PlaybackBackend",
        autoplay: bool = True,
        rng: Optional[random.Random] = None,
        event_capacity: int = DEFAULT_CHANNEL_CAPACITY,
    ):
        """
        Initialize engine.

        Args:
            backend: Playback backend executing slot commands
            autoplay: Start playing when songs are added to an empty queue
            rng: Random source for shuffling
            event_capacity: Soft limit of the backend event channel
        """
        self.backend = backend
        self.autoplay = autoplay

        self._queue = PlayQueue(rng)
        self._state = EngineState.EMPTY
        self._repeat = RepeatMode.NONE

        # Slot bookkeeping: which entry each slot holds and which is audible
        self._slots: dict[PlayerSlot, Optional[str]] = {PlayerSlot.SLOT_A: None, PlayerSlot.SLOT_B: None}
        self._active_slot = PlayerSlot.SLOT_A
        self._slot_live = False  # active slot has been activated since priming
        self._pending_prime: Optional[_PendingPrime] = None
        self._pending_seek: Optional[float] = None

        self._current_time: float = 0.0
        self._volume: int = 50
        self._speed: float = 1.0
        self._error: Optional[str] = None
        self._queue_version = 0

        self._wakeup = asyncio.Event()
        self._commands: deque[_Command] = deque()
        self._events = EventChannel(event_capacity, ready=self._wakeup)
        self._listeners: list[StateListener] = []
        self._batch = _Batch()

        self._loop_task: Optional[asyncio.Task] = None
        self._is_running = False

        self.backend.set_event_sink(self._events.publish)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the engine loop."""
        if self._is_running:
            return
        self._is_running = True
        self._events.bind(asyncio.get_running_loop())
        self._loop_task = asyncio.create_task(self._run_loop())
        logger.info("Queue engine started")

    async def shutdown(self) -> None:
        """Stop the engine loop. Pending commands are cancelled."""
        self._is_running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        await self._cancel_pending_prime()
        while self._commands:
            command = self._commands.popleft()
            if not command.future.done():
                command.future.cancel()
        logger.info("Queue engine stopped")

    @property
    def is_running(self) -> bool:
        return self._is_running

    def add_listener(self, listener: StateListener) -> None:
        """Register a callback invoked once per applied batch."""
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def events(self) -> EventChannel:
        """Channel carrying backend events into the engine."""
        return self._events

    # =========================================================================
    # Read-only view
    # =========================================================================

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def current_index(self) -> int:
        return self._queue.current_index

    @property
    def current(self) -> Optional[QueueEntry]:
        return self._queue.current

    @property
    def entries(self) -> list[QueueEntry]:
        """Entries in the ordering currently in effect."""
        return self._queue.entries

    @property
    def default_order(self) -> list[QueueEntry]:
        return self._queue.default_order

    @property
    def repeat_mode(self) -> RepeatMode:
        return self._repeat

    @property
    def shuffle_mode(self) -> ShuffleMode:
        return self._queue.shuffle_mode

    @property
    def active_slot(self) -> PlayerSlot:
        return self._active_slot

    def slot_entry(self, slot: PlayerSlot) -> Optional[str]:
        """Unique id of the entry primed in `slot`, if any."""
        return self._slots[slot]

    def snapshot(self) -> PlayerSnapshot:
        """Build an immutable view of the current state."""
        return PlayerSnapshot(
            state=self._state,
            current_index=self._queue.current_index,
            current=self._queue.current,
            queue_length=len(self._queue),
            repeat=self._repeat,
            shuffle=self._queue.shuffle_mode,
            active_slot=self._active_slot,
            current_time=self._current_time,
            volume=self._volume,
            speed=self._speed,
            error=self._error,
        )

    def export_state(self) -> dict[str, Any]:
        """Serializable snapshot used to resume on the next start."""
        data = {"version": SNAPSHOT_VERSION}
        data.update(self._queue.to_dict())
        data.update(
            {
                "repeat": self._repeat.value,
                "shuffle": self._queue.shuffle_mode.value,
                "position": round(self._current_time, 3),
                "volume": self._volume,
                "speed": self._speed,
            }
        )
        return data

    # =========================================================================
    # Queue Commands
    # =========================================================================

    async def add(self, songs: Iterable[Song], position: AddPosition = AddPosition.LAST) -> list[QueueEntry]:
        """Add songs to the queue. Returns the created entries."""
        songs = list(songs)
        return await self._submit("add", lambda: self._do_add(songs, position))

    async def remove(self, unique_ids: Iterable[str]) -> bool:
        """Remove entries by unique id. Unknown ids are ignored."""
        ids = list(unique_ids)
        return await self._submit("remove", lambda: self._do_remove(ids))

    async def move(self, unique_id: str, from_index: int, to_index: int) -> bool:
        return await self._submit("move", lambda: self._do_move(unique_id, from_index, to_index))

    async def clear(self) -> None:
        await self._submit("clear", self._do_clear)

    async def restore(self, data: dict[str, Any]) -> bool:
        """Replace the whole state with a dictionary from export_state()."""
        return await self._submit("restore", lambda: self._do_restore(data))

    # =========================================================================
    # Transport Commands
    # =========================================================================

    async def play(self) -> bool:
        return await self._submit("play", self._do_play)

    async def pause(self) -> bool:
        return await self._submit("pause", self._do_pause)

    async def stop(self) -> bool:
        return await self._submit("stop", self._do_stop)

    async def next(self) -> bool:
        """Move to the following entry. Wraps only under repeat ALL."""
        return await self._submit("next", self._do_next, navigation=True)

    async def previous(self) -> bool:
        """Move to the preceding entry. Wraps only under repeat ALL."""
        return await self._submit("previous", self._do_previous, navigation=True)

    async def set_current_index(self, index: int) -> bool:
        """Jump to an arbitrary entry and start playing it."""
        return await self._submit("set_current_index", lambda: self._do_jump(index), navigation=True)

    async def seek(self, seconds: float) -> bool:
        return await self._submit("seek", lambda: self._do_seek(seconds))

    async def set_volume(self, level: int) -> int:
        return await self._submit("set_volume", lambda: self._do_set_volume(level))

    async def set_speed(self, speed: float) -> float:
        return await self._submit("set_speed", lambda: self._do_set_speed(speed))

    # =========================================================================
    # Mode Commands
    # =========================================================================

    async def toggle_shuffle(self) -> ShuffleMode:
        return await self._submit("toggle_shuffle", lambda: self._do_set_shuffle(None))

    async def set_shuffle(self, mode: ShuffleMode) -> ShuffleMode:
        return await self._submit("set_shuffle", lambda: self._do_set_shuffle(mode))

    async def toggle_repeat(self) -> RepeatMode:
        """Cycle NONE -> ALL -> ONE -> NONE."""
        return await self._submit("toggle_repeat", lambda: self._do_set_repeat(None))

    async def set_repeat(self, mode: RepeatMode) -> RepeatMode:
        return await self._submit("set_repeat", lambda: self._do_set_repeat(mode))

    # =========================================================================
    # Song Metadata Commands
    # =========================================================================

    async def set_favorite(self, song_ids: Iterable[str], favorite: bool) -> int:
        """Update the favorite flag of queued songs. Returns entries updated."""
        ids = list(song_ids)
        return await self._submit("set_favorite", lambda: self._do_set_favorite(ids, favorite))

    async def set_rating(self, song_ids: Iterable[str], rating: Optional[int]) -> int:
        ids = list(song_ids)
        return await self._submit("set_rating", lambda: self._do_set_rating(ids, rating))

    async def flush(self) -> None:
        """Wait until every event, command and sibling load so far is applied."""
        await self._submit("flush", self._do_nothing)
        while self._pending_prime is not None:
            await asyncio.wait({self._pending_prime.task})
            await self._submit("flush", self._do_nothing)

    # =========================================================================
    # Loop
    # =========================================================================

    async def _submit(self, name: str, handler: Callable[[], Awaitable[Any]], navigation: bool = False) -> Any:
        if not self._is_running:
            await self.start()
        future = asyncio.get_running_loop().create_future()
        self._commands.append(_Command(name, handler, future, navigation))
        self._wakeup.set()
        return await future

    async def _run_loop(self) -> None:
        """Apply backend events and commands in arrival batches."""
        while self._is_running:
            try:
                await self._wakeup.wait()
                self._wakeup.clear()

                events = self._events.drain()
                commands = list(self._commands)
                self._commands.clear()
                if events or commands:
                    await self._apply_batch(events, commands)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Queue engine loop error: {e}", exc_info=True)

    async def _apply_batch(self, events: list[BackendEvent], commands: list[_Command]) -> None:
        before = self._fingerprint()
        self._batch = _Batch()

        for event in events:
            await self._apply_event(event)

        navigated = False
        for command in commands:
            if command.future.done():
                continue
            if command.navigation and navigated:
                logger.debug(f"Dropping {command.name}, batch already navigated")
                command.future.set_result(False)
                continue
            try:
                result = await command.handler()
            except Exception as e:
                logger.error(f"Command {command.name} failed: {e}", exc_info=True)
                if not command.future.done():
                    command.future.set_exception(e)
                continue
            if command.navigation and result:
                navigated = True
            if not command.future.done():
                command.future.set_result(result)

        await self._notify(before)

    def _fingerprint(self) -> tuple:
        current = self._queue.current
        return (
            current.unique_id if current else None,
            self._state.status if self._state is not EngineState.EMPTY else None,
            self._repeat,
            self._queue.shuffle_mode,
            self._volume,
            self._speed,
            self._queue_version,
        )

    async def _notify(self, before: tuple) -> None:
        after = self._fingerprint()
        batch = self._batch
        kinds = set(batch.kinds)
        if before[0] != after[0] or batch.song_restarted:
            kinds.add(ChangeKind.SONG)
        for i, kind in (
            (1, ChangeKind.PLAYBACK),
            (2, ChangeKind.REPEAT),
            (3, ChangeKind.SHUFFLE),
            (4, ChangeKind.VOLUME),
            (5, ChangeKind.SPEED),
            (6, ChangeKind.QUEUE),
        ):
            if before[i] != after[i]:
                kinds.add(kind)
        if not kinds:
            return

        change = StateChange(
            kinds=frozenset(kinds),
            snapshot=self.snapshot(),
            favorites=tuple(batch.favorites),
            ratings=tuple(batch.ratings),
            error=batch.error,
        )
        for listener in list(self._listeners):
            try:
                result = listener(change)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"State listener error: {e}", exc_info=True)

    # =========================================================================
    # Backend Events
    # =========================================================================

    async def _apply_event(self, event: BackendEvent) -> None:
        if isinstance(event, PositionTick):
            if self._slot_live and self._state in (EngineState.PLAYING, EngineState.PAUSED):
                self._current_time = event.seconds
                self._batch.kinds.add(ChangeKind.POSITION)
        elif isinstance(event, TrackEnded):
            await self._on_track_ended(event)
        elif isinstance(event, PlaybackError):
            await self._on_playback_error(event)
        elif isinstance(event, SlotPrimed):
            self._on_slot_primed(event)

    async def _on_track_ended(self, event: TrackEnded) -> None:
        if event.slot is not self._active_slot or not self._slot_live:
            logger.debug(f"Ignoring end of inactive slot {event.slot.name}")
            return
        if self._state is not EngineState.PLAYING:
            logger.debug(f"Ignoring track end while {self._state.value}")
            return

        if self._repeat is RepeatMode.ONE:
            logger.debug("Track ended, repeating current entry")
            await self._swap_to_current()
            return

        index = self._queue.next_index(wrap=self._repeat is RepeatMode.ALL)
        if index is None:
            logger.info("Reached end of queue")
            self._queue.set_current_index(0)
            await self._reset_slots(play=False, idle_state=EngineState.STOPPED)
            return

        self._queue.set_current_index(index)
        await self._swap_to_current()

    async def _on_playback_error(self, event: PlaybackError) -> None:
        if event.slot is not None and event.slot is not self._active_slot:
            # Preloading the upcoming entry failed; retried at handoff
            logger.warning(f"Playback error in {event.slot.name}: {event.message}")
            self._slots[event.slot] = None
            self._record_error(event.message)
            return
        self._fail(event.message)

    def _on_slot_primed(self, event: SlotPrimed) -> None:
        pending = self._pending_prime
        if pending is None or (pending.slot, pending.unique_id) != (event.slot, event.unique_id):
            logger.debug(f"Ignoring stale load of {event.slot.name}")
            return
        self._pending_prime = None
        if event.error:
            # Retried at handoff
            logger.warning(f"Loading {event.slot.name} failed: {event.error}")
            self._record_error(event.error)
            return
        self._slots[event.slot] = event.unique_id
        logger.debug(f"Primed {event.slot.name} in background")

    def _record_error(self, message: str) -> None:
        self._error = message
        self._batch.error = message
        self._batch.kinds.add(ChangeKind.ERROR)

    def _fail(self, message: str) -> None:
        """Pause on a playback failure, leaving the queue untouched."""
        logger.error(f"Playback error: {message}")
        self._record_error(message)
        self._slots[self._active_slot] = None
        self._slot_live = False
        if self._state is EngineState.PLAYING:
            self._state = EngineState.PAUSED

    # =========================================================================
    # Slot Handling
    # =========================================================================

    async def _call_backend(
        self, operation: str, call: Callable[..., Awaitable[None]], *args: Any, fatal: bool = True
    ) -> bool:
        try:
            await call(*args)
            return True
        except Exception as e:
            if fatal:
                self._fail(f"{operation} failed: {e}")
            else:
                logger.warning(f"Backend {operation} failed: {e}")
                self._record_error(f"{operation} failed: {e}")
            return False

    async def _prime(self, slot: PlayerSlot, entry: QueueEntry) -> bool:
        self._slots[slot] = None
        if not await self._call_backend("prime", self.backend.prime, slot, entry.song):
            return False
        self._slots[slot] = entry.unique_id
        logger.debug(f"Primed {slot.name} with {entry.song.name or entry.song.id}")
        return True

    async def _activate(self, slot: PlayerSlot) -> bool:
        if not await self._call_backend("activate", self.backend.activate, slot):
            return False
        previous = self._active_slot
        self._active_slot = slot
        if previous is not slot:
            self._slots[previous] = None
        self._slot_live = True
        self._state = EngineState.PLAYING
        self._error = None
        self._batch.song_restarted = True
        if self._pending_seek:
            position, self._pending_seek = self._pending_seek, None
            await self._call_backend("seek", self.backend.seek, position)
        return True

    def _upcoming(self) -> Optional[QueueEntry]:
        """Entry the next track-end event would move to."""
        if self._repeat is RepeatMode.ONE:
            return self._queue.current
        index = self._queue.next_index(wrap=self._repeat is RepeatMode.ALL)
        return self._queue.entry_at(index) if index is not None else None

    async def _background_prime(self, slot: PlayerSlot, entry: QueueEntry) -> bool:
        try:
            await self.backend.prime(slot, entry.song)
        except Exception as e:
            self._events.put(SlotPrimed(slot, entry.unique_id, error=f"prime failed: {e}"))
            return False
        self._events.put(SlotPrimed(slot, entry.unique_id))
        return True

    async def _cancel_pending_prime(self) -> None:
        pending, self._pending_prime = self._pending_prime, None
        if pending is None:
            return
        if not pending.task.done():
            pending.task.cancel()
        try:
            await pending.task
        except asyncio.CancelledError:
            pass

    async def _take_pending_prime(self, slot: PlayerSlot, entry: QueueEntry) -> bool:
        """Wait for a background load of `entry` into `slot`, if one is running."""
        pending = self._pending_prime
        if pending is None or (pending.slot, pending.unique_id) != (slot, entry.unique_id):
            await self._cancel_pending_prime()
            return False
        self._pending_prime = None
        if not await pending.task:
            return False
        self._slots[slot] = entry.unique_id
        return True

    async def _ensure_sibling(self) -> None:
        """Keep the sibling slot loading or loaded with the upcoming entry."""
        if self._queue.is_empty:
            return
        sibling = self._active_slot.other
        upcoming = self._upcoming()
        wanted = upcoming.unique_id if upcoming else None
        pending = self._pending_prime
        if pending is not None and (pending.slot, pending.unique_id) == (sibling, wanted):
            return
        await self._cancel_pending_prime()
        if self._slots[sibling] == wanted and pending is None:
            return
        if upcoming is None or self._slots[sibling] is not None or pending is not None:
            # The backend may continue into whatever the sibling holds
            await self._call_backend("release", self.backend.release, sibling, fatal=False)
        self._slots[sibling] = None
        if upcoming is not None:
            task = asyncio.create_task(self._background_prime(sibling, upcoming))
            self._pending_prime = _PendingPrime(sibling, upcoming.unique_id, task)

    async def _swap_to_current(self) -> None:
        """Adjacent handoff: the sibling slot becomes the active one."""
        entry = self._queue.current
        if entry is None:
            return
        sibling = self._active_slot.other
        self._current_time = 0.0
        self._batch.song_restarted = True
        if self._slots[sibling] != entry.unique_id:
            if not await self._take_pending_prime(sibling, entry) and not await self._prime(sibling, entry):
                return
        if await self._activate(sibling):
            await self._ensure_sibling()

    async def _reset_slots(self, play: bool, idle_state: EngineState = EngineState.STOPPED) -> None:
        """Discontinuous transition: both slots are reset and re-primed."""
        await self._cancel_pending_prime()
        await self._call_backend("stop", self.backend.stop)
        self._slots = {PlayerSlot.SLOT_A: None, PlayerSlot.SLOT_B: None}
        self._active_slot = PlayerSlot.SLOT_A
        self._slot_live = False
        self._current_time = 0.0
        self._batch.song_restarted = True

        entry = self._queue.current
        if entry is None:
            self._state = EngineState.EMPTY
            return

        self._state = idle_state
        if not await self._prime(self._active_slot, entry):
            return
        if play:
            await self._activate(self._active_slot)
        await self._ensure_sibling()

    async def _move_to(self, index: int) -> None:
        """Move to an adjacent entry, keeping the playback status."""
        self._queue.set_current_index(index)
        if self._state is EngineState.PLAYING and self._slot_live:
            await self._swap_to_current()
        else:
            await self._reset_slots(play=self._state is EngineState.PLAYING, idle_state=self._state)

    # =========================================================================
    # Command Handlers
    # =========================================================================

    async def _do_nothing(self) -> None:
        return None

    async def _do_add(self, songs: list[Song], position: AddPosition) -> list[QueueEntry]:
        was_empty = self._queue.is_empty
        added = self._queue.append(songs, position)
        if not added:
            return []
        self._queue_version += 1

        if was_empty or position is AddPosition.NOW:
            play = position is AddPosition.NOW or self.autoplay
            await self._reset_slots(play=play, idle_state=EngineState.STOPPED)
        else:
            await self._ensure_sibling()
        logger.info(f"Queued {len(added)} songs ({position.value})")
        return added

    async def _do_remove(self, unique_ids: list[str]) -> bool:
        length = len(self._queue)
        current_changed = self._queue.remove(unique_ids)
        if len(self._queue) == length:
            return False
        self._queue_version += 1

        if self._queue.is_empty:
            await self._reset_slots(play=False)
        elif current_changed:
            playing = self._state is EngineState.PLAYING
            await self._reset_slots(play=playing, idle_state=EngineState.STOPPED if playing else self._state)
        else:
            await self._ensure_sibling()
        return True

    async def _do_move(self, unique_id: str, from_index: int, to_index: int) -> bool:
        if not self._queue.move(unique_id, from_index, to_index):
            return False
        self._queue_version += 1
        await self._ensure_sibling()
        return True

    async def _do_clear(self) -> None:
        if self._queue.is_empty:
            return
        self._queue.clear()
        self._queue_version += 1
        self._pending_seek = None
        await self._reset_slots(play=False)
        logger.info("Queue cleared")

    async def _do_restore(self, data: dict[str, Any]) -> bool:
        # Every field is parsed before any state changes
        try:
            repeat = RepeatMode(data.get("repeat", RepeatMode.NONE.value))
            volume = clamp_volume(int(data.get("volume", self._volume)))
            speed = clamp_speed(float(data.get("speed", self._speed)))
            position = max(0.0, float(data.get("position") or 0.0))
            self._queue.load_dict(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable queue snapshot: {e}")
            if not self._queue.is_empty:
                self._queue.clear()
                self._queue_version += 1
            self._pending_seek = None
            await self._reset_slots(play=False)
            return False

        self._repeat = repeat
        self._volume = volume
        self._speed = speed
        self._queue_version += 1
        await self._call_backend("set_volume", self.backend.set_volume, self._volume)
        await self._call_backend("set_speed", self.backend.set_speed, self._speed)

        await self._reset_slots(play=False, idle_state=EngineState.STOPPED)
        if position > 0 and self._queue.current is not None:
            self._current_time = position
            self._pending_seek = position
        logger.info(f"Restored queue with {len(self._queue)} entries at index {self._queue.current_index}")
        return True

    async def _do_play(self) -> bool:
        if self._state is EngineState.EMPTY:
            return False
        if self._state is EngineState.PLAYING:
            return True

        if self._slot_live:
            if not await self._call_backend("resume", self.backend.resume):
                return False
            self._state = EngineState.PLAYING
            self._error = None
            return True

        entry = self._queue.current
        if self._slots[self._active_slot] != entry.unique_id:
            if not await self._prime(self._active_slot, entry):
                return False
        if not await self._activate(self._active_slot):
            return False
        await self._ensure_sibling()
        return True

    async def _do_pause(self) -> bool:
        if self._state is not EngineState.PLAYING:
            return False
        if not await self._call_backend("pause", self.backend.pause):
            return False
        self._state = EngineState.PAUSED
        return True

    async def _do_stop(self) -> bool:
        if self._state is EngineState.EMPTY:
            return False
        self._pending_seek = None
        await self._reset_slots(play=False, idle_state=EngineState.STOPPED)
        return True

    async def _do_next(self) -> bool:
        if self._state is EngineState.EMPTY:
            return False
        index = self._queue.next_index(wrap=self._repeat is RepeatMode.ALL)
        if index is None:
            logger.debug("Next ignored at end of queue")
            return False
        await self._move_to(index)
        return True

    async def _do_previous(self) -> bool:
        if self._state is EngineState.EMPTY:
            return False
        index = self._queue.previous_index(wrap=self._repeat is RepeatMode.ALL)
        if index is None:
            logger.debug("Previous ignored at start of queue")
            return False
        await self._move_to(index)
        return True

    async def _do_jump(self, index: int) -> bool:
        if not self._queue.set_current_index(index):
            logger.debug(f"Ignoring jump to invalid index {index}")
            return False
        self._pending_seek = None
        await self._reset_slots(play=True)
        return True

    async def _do_seek(self, seconds: float) -> bool:
        entry = self._queue.current
        if entry is None:
            return False
        position = max(0.0, float(seconds))
        if entry.song.duration > 0:
            position = min(position, entry.song.duration)

        self._current_time = position
        self._batch.kinds.add(ChangeKind.POSITION)
        if self._slot_live:
            await self._call_backend("seek", self.backend.seek, position)
        else:
            self._pending_seek = position
        return True

    async def _do_set_volume(self, level: int) -> int:
        self._volume = clamp_volume(level)
        await self._call_backend("set_volume", self.backend.set_volume, self._volume)
        return self._volume

    async def _do_set_speed(self, speed: float) -> float:
        self._speed = clamp_speed(speed)
        await self._call_backend("set_speed", self.backend.set_speed, self._speed)
        return self._speed

    async def _do_set_shuffle(self, mode: Optional[ShuffleMode]) -> ShuffleMode:
        if mode is None:
            mode = ShuffleMode.NONE if self._queue.shuffle_mode is ShuffleMode.TRACK else ShuffleMode.TRACK
        if mode is not self._queue.shuffle_mode:
            self._queue.set_shuffle(mode)
            self._queue_version += 1
            await self._ensure_sibling()
        return self._queue.shuffle_mode

    async def _do_set_repeat(self, mode: Optional[RepeatMode]) -> RepeatMode:
        self._repeat = self._repeat.cycle() if mode is None else mode
        await self._ensure_sibling()
        return self._repeat

    async def _do_set_favorite(self, song_ids: list[str], favorite: bool) -> int:
        updated = 0
        for song_id in song_ids:
            updated += self._queue.replace_song(song_id, user_favorite=favorite)
            self._batch.favorites.append((song_id, favorite))
        self._batch.kinds.add(ChangeKind.FAVORITE)
        return updated

    async def _do_set_rating(self, song_ids: list[str], rating: Optional[int]) -> int:
        updated = 0
        for song_id in song_ids:
            updated += self._queue.replace_song(song_id, user_rating=rating)
            self._batch.ratings.append((song_id, rating))
        self._batch.kinds.add(ChangeKind.RATING)
        return updated
