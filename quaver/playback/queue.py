"""
Queue model for Quaver.

Handles entry ordering, shuffle and navigation. No playback side effects:
the queue engine owns an instance and serializes every call.
"""

import logging
import random
from typing import Any, Iterable, Optional

from .models import AddPosition, QueueEntry, ShuffleMode, Song

logger = logging.getLogger(__name__)

# Current index when the queue is empty
EMPTY_INDEX = -1


class PlayQueue:
    """
    Ordered song queue with an optional shuffled ordering.

    Handles:
    - Adding songs now / next / last
    - Removing and moving entries by unique id
    - Shuffle mode with the current entry kept current
    - Index navigation with or without wrap-around
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        """Initialize empty queue."""
        self._default: list[QueueEntry] = []
        self._shuffled: Optional[list[QueueEntry]] = None
        self._current_index: int = EMPTY_INDEX
        self._rng = rng or random.Random()

    # =========================================================================
    # Access
    # =========================================================================

    @property
    def entries(self) -> list[QueueEntry]:
        """Entries in the ordering currently in effect."""
        return list(self._active)

    @property
    def default_order(self) -> list[QueueEntry]:
        """Entries in insertion order, regardless of shuffle."""
        return list(self._default)

    @property
    def shuffle_mode(self) -> ShuffleMode:
        return ShuffleMode.NONE if self._shuffled is None else ShuffleMode.TRACK

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def current(self) -> Optional[QueueEntry]:
        return self.entry_at(self._current_index)

    @property
    def is_empty(self) -> bool:
        return not self._default

    def __len__(self) -> int:
        return len(self._default)

    def entry_at(self, index: int) -> Optional[QueueEntry]:
        if 0 <= index < len(self._active):
            return self._active[index]
        return None

    def index_of(self, unique_id: str) -> Optional[int]:
        """Position of an entry in the active ordering."""
        for i, entry in enumerate(self._active):
            if entry.unique_id == unique_id:
                return i
        return None

    @property
    def _active(self) -> list[QueueEntry]:
        return self._shuffled if self._shuffled is not None else self._default

    # =========================================================================
    # Mutation
    # =========================================================================

    def append(self, songs: Iterable[Song], position: AddPosition = AddPosition.LAST) -> list[QueueEntry]:
        """
        Insert songs into the queue.

        Args:
            songs: Songs to add, each gets a fresh unique id
            position: NOW replaces the queue, NEXT inserts after the
                current entry, LAST appends to the tail

        Returns:
            The inserted entries in insertion order
        """
        added = [QueueEntry.create(song) for song in songs]
        if not added:
            return []

        if position is AddPosition.NOW or self.is_empty:
            if position is AddPosition.NOW:
                self._default = list(added)
            else:
                self._default.extend(added)
            if self._shuffled is not None:
                self._shuffled = list(self._default)
                self._rng.shuffle(self._shuffled)
            self._current_index = 0
        elif position is AddPosition.NEXT:
            current = self.current
            default_pos = self._default.index(current) + 1 if current else len(self._default)
            self._default[default_pos:default_pos] = added
            if self._shuffled is not None:
                self._shuffled[self._current_index + 1 : self._current_index + 1] = added
        else:
            self._default.extend(added)
            if self._shuffled is not None:
                tail = list(added)
                self._rng.shuffle(tail)
                self._shuffled.extend(tail)

        logger.debug(f"Added {len(added)} entries ({position.value}), queue length {len(self)}")
        return added

    def remove(self, unique_ids: Iterable[str]) -> bool:
        """
        Remove entries by unique id.

        Unknown ids are ignored. If the current entry is removed, the entry
        that followed it becomes current, falling back to the new last entry,
        falling back to empty.

        Returns:
            True if the current entry changed
        """
        ids = set(unique_ids)
        if not ids or not any(e.unique_id in ids for e in self._default):
            logger.debug(f"Remove ignored, no matching entries for {len(ids)} ids")
            return False

        current = self.current
        active_before = self._active

        # First surviving entry at or after the current position
        successor: Optional[QueueEntry] = None
        if current is not None and current.unique_id in ids:
            for entry in active_before[self._current_index + 1 :]:
                if entry.unique_id not in ids:
                    successor = entry
                    break

        self._default = [e for e in self._default if e.unique_id not in ids]
        if self._shuffled is not None:
            self._shuffled = [e for e in self._shuffled if e.unique_id not in ids]

        if not self._default:
            self._current_index = EMPTY_INDEX
            return current is not None

        if current is not None and current.unique_id not in ids:
            self._current_index = self._active.index(current)
            return False

        if successor is not None:
            self._current_index = self._active.index(successor)
        else:
            self._current_index = len(self._active) - 1
        return True

    def move(self, unique_id: str, from_index: int, to_index: int) -> bool:
        """
        Move an entry within the active ordering.

        While shuffled only the shuffled ordering changes, so turning
        shuffle off restores the original order.

        Returns:
            True if the entry was moved
        """
        active = self._active
        if self.entry_at(from_index) is None or active[from_index].unique_id != unique_id:
            found = self.index_of(unique_id)
            if found is None:
                logger.debug(f"Move ignored, entry {unique_id} not in queue")
                return False
            from_index = found

        if not 0 <= to_index < len(active):
            logger.debug(f"Move ignored, target index {to_index} out of range")
            return False

        current = self.current
        entry = active.pop(from_index)
        active.insert(to_index, entry)
        if current is not None:
            self._current_index = active.index(current)
        return True

    def clear(self) -> None:
        """Remove every entry."""
        self._default.clear()
        if self._shuffled is not None:
            self._shuffled = []
        self._current_index = EMPTY_INDEX

    def replace_song(self, song_id: str, **changes: Any) -> int:
        """Apply field changes to the song of every entry with `song_id`."""
        updated = 0

        def patch(entries: list[QueueEntry]) -> list[QueueEntry]:
            return [
                QueueEntry(e.unique_id, e.song.with_changes(**changes)) if e.song.id == song_id else e
                for e in entries
            ]

        for entry in self._default:
            if entry.song.id == song_id:
                updated += 1
        if updated:
            self._default = patch(self._default)
            if self._shuffled is not None:
                self._shuffled = patch(self._shuffled)
        return updated

    # =========================================================================
    # Shuffle
    # =========================================================================

    def set_shuffle(self, mode: ShuffleMode) -> None:
        """
        Enable or disable shuffle, keeping the current entry current.

        The shuffled ordering starts with the current entry followed by a
        random permutation of the rest.
        """
        if mode is self.shuffle_mode:
            return

        current = self.current
        if mode is ShuffleMode.TRACK:
            rest = [e for e in self._default if e is not current]
            self._rng.shuffle(rest)
            self._shuffled = ([current] if current is not None else []) + rest
        else:
            self._shuffled = None

        if current is not None:
            self._current_index = self._active.index(current)
        logger.debug(f"Shuffle {mode.value}, current index {self._current_index}")

    # =========================================================================
    # Navigation
    # =========================================================================

    def set_current_index(self, index: int) -> bool:
        if self.entry_at(index) is None:
            return False
        self._current_index = index
        return True

    def next_index(self, wrap: bool) -> Optional[int]:
        """Index after the current one, or None at the end without wrap."""
        if self.is_empty:
            return None
        following = self._current_index + 1
        if following < len(self._active):
            return following
        return 0 if wrap else None

    def previous_index(self, wrap: bool) -> Optional[int]:
        """Index before the current one, or None at the start without wrap."""
        if self.is_empty:
            return None
        if self._current_index > 0:
            return self._current_index - 1
        return len(self._active) - 1 if wrap else None

    # =========================================================================
    # Persistence
    # =========================================================================

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": [e.to_dict() for e in self._default],
            "shuffled": [e.unique_id for e in self._shuffled] if self._shuffled is not None else None,
            "currentIndex": self._current_index,
        }

    def load_dict(self, data: dict[str, Any]) -> None:
        """
        Replace contents with a dictionary produced by `to_dict`.

        The queue is left untouched when the dictionary does not parse.

        Raises:
            KeyError, TypeError, ValueError: On a malformed dictionary
        """
        entries = [QueueEntry.from_dict(e) for e in data.get("entries", [])]
        by_id = {e.unique_id: e for e in entries}

        shuffled_ids = data.get("shuffled")
        shuffled = None
        if shuffled_ids is not None:
            shuffled = [by_id[uid] for uid in shuffled_ids if uid in by_id]
            # Entries missing from a damaged permutation go to the tail
            seen = {e.unique_id for e in shuffled}
            shuffled.extend(e for e in entries if e.unique_id not in seen)

        index = int(data.get("currentIndex", 0))

        self._default = entries
        self._shuffled = shuffled
        if not entries:
            self._current_index = EMPTY_INDEX
        else:
            self._current_index = min(max(index, 0), len(entries) - 1)
