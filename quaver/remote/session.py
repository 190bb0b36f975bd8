"""
Remote session.

One session per WebSocket connection. Outbound events go through a
bounded queue drained by a writer task, so broadcasting never waits on a
slow subscriber; when the queue is full the oldest pending event is
dropped.
"""

import asyncio
import itertools
import logging
from collections import deque
from enum import Enum
from typing import Optional, Union

from aiohttp import web

from .protocol import CloseCode, ServerEvent

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 64

_session_ids = itertools.count(1)


class SessionState(Enum):
    """Lifecycle of a remote session."""

    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class RemoteSession:
    """
    A connected remote client.

    The session owns its WebSocket for writing; the server owns reading.
    """

    def __init__(
        self,
        ws: web.WebSocketResponse,
        remote: str = "",
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        self.id = next(_session_ids)
        self.remote = remote
        self.state = SessionState.CONNECTING
        self.dropped = 0

        self._ws = ws
        self._queue_size = max(1, queue_size)
        self._outbound: deque[str] = deque()
        self._close_code: Optional[int] = None
        self._close_reason = ""
        self._wakeup = asyncio.Event()
        self._writer_task: Optional[asyncio.Task] = None
        self._auth_task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"RemoteSession({self.id}, {self.remote or '?'}, {self.state.value})"

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    @property
    def is_open(self) -> bool:
        return self.state not in (SessionState.CLOSING, SessionState.CLOSED)

    @property
    def pending(self) -> int:
        return len(self._outbound)

    @property
    def close_code(self) -> Optional[int]:
        return self._close_code

    def start(self) -> None:
        """Start the writer task."""
        if self._writer_task is None:
            self._writer_task = asyncio.create_task(self._write_loop())

    def watch_auth(self, timeout: float) -> None:
        """Close with AUTH_TIMEOUT unless the session is active within `timeout` seconds."""
        self.state = SessionState.AUTHENTICATING
        self._auth_task = asyncio.create_task(self._auth_watchdog(timeout))

    def activate(self) -> None:
        self.state = SessionState.ACTIVE
        if self._auth_task:
            self._auth_task.cancel()
            self._auth_task = None

    def send(self, event: Union[ServerEvent, str]) -> bool:
        """
        Queue an event for delivery.

        Returns:
            False if the session is closing and the event was discarded
        """
        if not self.is_open:
            return False
        if len(self._outbound) >= self._queue_size:
            self._outbound.popleft()
            self.dropped += 1
            logger.debug(f"{self}: outbound queue full, dropped oldest event")
        self._outbound.append(event if isinstance(event, str) else event.encode())
        self._wakeup.set()
        return True

    def close(self, code: int, reason: str = "") -> None:
        """
        Queue a close after everything already queued.

        The first close wins; later calls are ignored.
        """
        if not self.is_open:
            return
        self.state = SessionState.CLOSING
        self._close_code = int(code)
        self._close_reason = reason
        if self._auth_task:
            self._auth_task.cancel()
            self._auth_task = None
        self._wakeup.set()

    async def wait_closed(self) -> None:
        if self._writer_task:
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass

    async def abort(self) -> None:
        """Stop the writer without a close frame; the socket is already gone."""
        self.state = SessionState.CLOSED
        self._outbound.clear()
        for task in (self._auth_task, self._writer_task):
            if task and not task.done():
                task.cancel()
        if self._writer_task:
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass

    # =========================================================================
    # Tasks
    # =========================================================================

    async def _write_loop(self) -> None:
        try:
            while True:
                await self._wakeup.wait()
                self._wakeup.clear()

                while self._outbound:
                    message = self._outbound.popleft()
                    await self._ws.send_str(message)

                if self.state is SessionState.CLOSING:
                    break
        except (ConnectionResetError, RuntimeError) as e:
            logger.debug(f"{self}: write failed: {e}")
            self._outbound.clear()
        finally:
            if self.state is SessionState.CLOSING and not self._ws.closed:
                await self._ws.close(code=self._close_code, message=self._close_reason.encode())
            self.state = SessionState.CLOSED

    async def _auth_watchdog(self, timeout: float) -> None:
        await asyncio.sleep(timeout)
        if self.state is SessionState.AUTHENTICATING:
            logger.info(f"{self}: authentication timed out")
            self.close(CloseCode.AUTH_TIMEOUT, "authentication timeout")
