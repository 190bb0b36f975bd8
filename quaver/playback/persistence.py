"""
Queue persistence.

Stores the engine's exported state as zlib-compressed JSON so a restarted
player can resume where it left off.
"""

import json
import logging
import os
import zlib
from pathlib import Path
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_FILENAME = "queue.bin"


def default_queue_path() -> Path:
    """Queue file location under the user's state directory."""
    base = os.environ.get("XDG_STATE_HOME") or os.path.join(Path.home(), ".local", "state")
    return Path(base) / "quaver" / DEFAULT_QUEUE_FILENAME


class QueueStore:
    """Reads and writes the compressed queue snapshot."""

    def __init__(self, path: Union[str, Path, None] = None):
        self.path = Path(path).expanduser() if path else default_queue_path()

    def save(self, data: dict[str, Any]) -> bool:
        """
        Write a snapshot.

        The file is replaced atomically so a crash mid-write leaves the
        previous snapshot intact.

        Returns:
            True if the snapshot was written
        """
        try:
            payload = zlib.compress(json.dumps(data, separators=(",", ":")).encode("utf-8"))
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_bytes(payload)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save queue to {self.path}: {e}")
            return False

        logger.info(f"Saved queue ({len(data.get('entries', []))} entries) to {self.path}")
        return True

    def load(self) -> Optional[dict[str, Any]]:
        """Read a snapshot. Returns None when missing or unreadable."""
        if not self.path.exists():
            logger.debug(f"No saved queue at {self.path}")
            return None
        try:
            data = json.loads(zlib.decompress(self.path.read_bytes()).decode("utf-8"))
        except (OSError, zlib.error, UnicodeDecodeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable queue file {self.path}: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"Ignoring queue file {self.path}: unexpected content")
            return None
        return data

    def clear(self) -> None:
        """Delete the saved snapshot."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove queue file {self.path}: {e}")
