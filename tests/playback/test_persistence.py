"""Tests for queue persistence."""

import zlib
from pathlib import Path

import pytest

from quaver.playback.persistence import QueueStore, default_queue_path


class TestQueueStore:
    """Tests for QueueStore."""

    @pytest.fixture
    def store(self, tmp_path: Path) -> QueueStore:
        """Store inside a temporary directory."""
        return QueueStore(tmp_path / "state" / "queue.bin")

    def test_save_and_load(self, store: QueueStore) -> None:
        """Test a saved snapshot loads back."""
        data = {"version": 1, "entries": [], "currentIndex": -1, "repeat": "ALL"}
        assert store.save(data) is True
        assert store.path.exists()
        assert store.load() == data

    def test_file_is_compressed(self, store: QueueStore) -> None:
        """Test the file holds zlib-compressed JSON."""
        store.save({"entries": []})
        assert zlib.decompress(store.path.read_bytes()) == b'{"entries":[]}'

    def test_load_missing(self, store: QueueStore) -> None:
        """Test a missing file loads as None."""
        assert store.load() is None

    def test_load_corrupt(self, store: QueueStore) -> None:
        """Test a corrupt file loads as None."""
        store.path.parent.mkdir(parents=True)
        store.path.write_bytes(b"not zlib")
        assert store.load() is None

    def test_load_non_mapping(self, store: QueueStore) -> None:
        """Test a snapshot that is not an object is rejected."""
        store.path.parent.mkdir(parents=True)
        store.path.write_bytes(zlib.compress(b"[1, 2]"))
        assert store.load() is None

    def test_unserializable_data(self, store: QueueStore) -> None:
        """Test save reports failure instead of raising."""
        assert store.save({"bad": object()}) is False
        assert not store.path.exists()

    def test_clear(self, store: QueueStore) -> None:
        """Test clear removes the file and tolerates a missing one."""
        store.save({"entries": []})
        store.clear()
        assert not store.path.exists()
        store.clear()

    def test_default_path_uses_xdg(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Test the default location honours XDG_STATE_HOME."""
        monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path))
        assert default_queue_path() == tmp_path / "quaver" / "queue.bin"
        assert QueueStore().path == tmp_path / "quaver" / "queue.bin"
