"""mpv playback backend."""

from .backend import MpvBackend
from .ipc import MpvIPC, MpvIPCError, MpvProcess

__all__ = ["MpvBackend", "MpvIPC", "MpvIPCError", "MpvProcess"]
