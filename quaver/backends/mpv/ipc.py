"""
mpv JSON IPC.

Spawns an mpv process with an IPC socket and talks to it with newline
delimited JSON: commands carry a request id and get a matching reply,
everything else on the socket is an event.
"""

import asyncio
import json
import logging
import os
import tempfile
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

COMMAND_TIMEOUT = 5.0
CONNECT_TIMEOUT = 5.0

# Arguments every player process needs
BASE_ARGS = [
    "--idle=yes",
    "--no-video",
    "--no-terminal",
    "--audio-display=no",
    "--gapless-audio=weak",
    "--prefetch-playlist=yes",
    "--replaygain=track",
]

EventHandler = Callable[[dict[str, Any]], None]


class MpvIPCError(Exception):
    """mpv rejected a command or the connection failed."""

    pass


def default_socket_path() -> str:
    return os.path.join(tempfile.gettempdir(), f"quaver-mpv-{os.getpid()}.sock")


class MpvProcess:
    """An mpv child process running in idle mode."""

    def __init__(self, executable: str = "mpv", socket_path: Optional[str] = None, extra_args: Optional[list[str]] = None):
        self.executable = executable
        self.socket_path = socket_path or default_socket_path()
        self.extra_args = list(extra_args or [])
        self._process: Optional[asyncio.subprocess.Process] = None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self) -> None:
        """
        Start mpv.

        Raises:
            MpvIPCError: If the executable cannot be started
        """
        if self.running:
            return
        if os.path.exists(self.socket_path):
            os.unlink(self.socket_path)

        args = [*BASE_ARGS, f"--input-ipc-server={self.socket_path}", *self.extra_args]
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.executable,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise MpvIPCError(f"Cannot start {self.executable}: {e}") from e
        logger.info(f"Started mpv (pid {self._process.pid}) on {self.socket_path}")

    async def terminate(self, timeout: float = 3.0) -> None:
        if not self.running:
            return
        self._process.terminate()
        try:
            await asyncio.wait_for(self._process.wait(), timeout)
        except asyncio.TimeoutError:
            logger.warning("mpv did not exit, killing it")
            self._process.kill()
            await self._process.wait()
        self._process = None
        if os.path.exists(self.socket_path):
            os.unlink(self.socket_path)


class MpvIPC:
    """Async client for the mpv IPC socket."""

    def __init__(self, socket_path: str, on_event: Optional[EventHandler] = None):
        self.socket_path = socket_path
        self.on_event = on_event
        self.on_close: Optional[Callable[[], None]] = None
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._read_task: Optional[asyncio.Task] = None
        self._pending: dict[int, asyncio.Future] = {}
        self._next_id = 1

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def connect(self, timeout: float = CONNECT_TIMEOUT) -> None:
        """
        Connect to the socket, waiting for mpv to create it.

        Raises:
            MpvIPCError: If the socket does not accept a connection in time
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            try:
                self._reader, self._writer = await asyncio.open_unix_connection(self.socket_path)
                break
            except (FileNotFoundError, ConnectionRefusedError) as e:
                if loop.time() >= deadline:
                    raise MpvIPCError(f"mpv socket {self.socket_path} not available: {e}") from e
                await asyncio.sleep(0.1)
        self._read_task = asyncio.create_task(self._read_loop())
        logger.debug(f"Connected to mpv socket {self.socket_path}")

    async def close(self) -> None:
        if self._read_task:
            self._read_task.cancel()
            try:
                await self._read_task
            except asyncio.CancelledError:
                pass
            self._read_task = None
        if self._writer:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except (OSError, ConnectionError):
                pass
            self._writer = None
        self._fail_pending(MpvIPCError("connection closed"))

    async def command(self, *args: Any, wait: bool = True) -> Any:
        """
        Send a command.

        Args:
            args: Command name followed by its arguments
            wait: Wait for the reply; otherwise the reply is discarded

        Returns:
            The reply's `data` field

        Raises:
            MpvIPCError: If mpv reports an error or the connection is gone
        """
        if not self.connected:
            raise MpvIPCError("not connected to mpv")

        request_id = self._next_id
        self._next_id += 1
        payload = {"command": list(args), "request_id": request_id}

        future: Optional[asyncio.Future] = None
        if wait:
            future = asyncio.get_running_loop().create_future()
            self._pending[request_id] = future

        self._writer.write(json.dumps(payload, separators=(",", ":")).encode("utf-8") + b"\n")
        try:
            await self._writer.drain()
        except (OSError, ConnectionError) as e:
            self._pending.pop(request_id, None)
            raise MpvIPCError(f"write failed: {e}") from e

        if future is None:
            return None
        try:
            reply = await asyncio.wait_for(future, COMMAND_TIMEOUT)
        except asyncio.TimeoutError as e:
            raise MpvIPCError(f"{args[0]} timed out") from e
        finally:
            self._pending.pop(request_id, None)

        if reply.get("error") != "success":
            raise MpvIPCError(f"{args[0]} failed: {reply.get('error')}")
        return reply.get("data")

    async def set_property(self, name: str, value: Any, wait: bool = True) -> None:
        await self.command("set_property", name, value, wait=wait)

    async def observe_property(self, observe_id: int, name: str) -> None:
        await self.command("observe_property", observe_id, name)

    async def _read_loop(self) -> None:
        try:
            while True:
                line = await self._reader.readline()
                if not line:
                    break
                try:
                    message = json.loads(line)
                except ValueError:
                    logger.debug(f"Ignoring malformed mpv message: {line[:100]!r}")
                    continue
                self._dispatch(message)
        except asyncio.CancelledError:
            raise
        except (OSError, ConnectionError) as e:
            logger.warning(f"mpv socket error: {e}")

        logger.info("mpv socket closed")
        self._fail_pending(MpvIPCError("mpv closed the connection"))
        if self.on_close:
            self.on_close()

    def _dispatch(self, message: dict[str, Any]) -> None:
        request_id = message.get("request_id")
        if request_id is not None and "event" not in message:
            future = self._pending.get(request_id)
            if future and not future.done():
                future.set_result(message)
            return
        if "event" in message and self.on_event:
            try:
                self.on_event(message)
            except Exception as e:
                logger.error(f"mpv event handler error: {e}", exc_info=True)

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()
