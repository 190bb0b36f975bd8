"""
Remote control server.

Serves the remote WebSocket endpoint on aiohttp, authenticates sessions
and fans engine state changes out to every active session.
"""

import asyncio
import base64
import hmac
import logging
from typing import TYPE_CHECKING, Optional

from aiohttp import WSMsgType, web

from quaver.config import RemoteConfig
from quaver.playback.state import StateChange

from .command_handler import RemoteCommandHandler
from .protocol import (
    AUTHENTICATE,
    CloseCode,
    ProtocolError,
    decode_client_message,
    error_event,
    events_for_change,
    state_event,
)
from .session import RemoteSession, SessionState

if TYPE_CHECKING:
    from quaver.playback.engine import QueueEngine

logger = logging.getLogger(__name__)

BANNER = "quaver remote control endpoint\n"
AUTH_REALM = "quaver"
SHUTDOWN_TIMEOUT = 5.0  # seconds to flush sessions on stop


def basic_auth_header(username: str, password: str) -> str:
    """Build an HTTP Basic authorization header value."""
    token = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
    return f"Basic {token}"


class RemoteServer:
    """
    WebSocket server for remote control clients.

    Usage:
        server = RemoteServer(engine, config.remote)
        await server.start()
        ...
        await server.stop()
    """

    def __init__(
        self,
        engine: "QueueEngine",
        config: Optional[RemoteConfig] = None,
        command_handler: Optional[RemoteCommandHandler] = None,
    ):
        """
        Initialize remote server.

        Args:
            engine: Queue engine to control and observe
            config: Remote configuration
            command_handler: Handler for control events (defaults to one without a media server)
        """
        self.engine = engine
        self.config = config or RemoteConfig()
        self.handler = command_handler or RemoteCommandHandler(engine)

        self._expected_header = (
            basic_auth_header(self.config.username, self.config.password)
            if self.config.requires_auth
            else ""
        )
        self._sessions: set[RemoteSession] = set()
        self._app: Optional[web.Application] = None
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._listening = False

    @property
    def sessions(self) -> list[RemoteSession]:
        return sorted(self._sessions, key=lambda s: s.id)

    @property
    def active_sessions(self) -> list[RemoteSession]:
        return [s for s in self.sessions if s.is_active]

    @property
    def is_running(self) -> bool:
        return self._site is not None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def build_app(self) -> web.Application:
        """Create the aiohttp application and subscribe to engine changes."""
        self._app = web.Application()
        self._app.router.add_get("/", self._handle_root)
        self._app.router.add_get("/credentials", self._handle_credentials)
        self._app.on_shutdown.append(self._on_app_shutdown)
        if not self._listening:
            self.engine.add_listener(self._on_change)
            self._listening = True
        return self._app

    async def start(self) -> None:
        """Start listening."""
        app = self.build_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await self._site.start()

        auth = "enabled" if self.config.requires_auth else "disabled"
        logger.info(f"Remote server started on {self.config.host}:{self.config.port} (auth {auth})")

    async def stop(self) -> None:
        """Close every session with SERVER_SHUTDOWN and stop listening."""
        await self.close_sessions()
        if self._site:
            await self._site.stop()
            self._site = None
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        if self._listening:
            self.engine.remove_listener(self._on_change)
            self._listening = False
        await self.handler.close()
        logger.info("Remote server stopped")

    async def close_sessions(self, code: int = CloseCode.SERVER_SHUTDOWN) -> None:
        sessions = list(self._sessions)
        for session in sessions:
            session.close(code, "server shutdown")
        if sessions:
            done, pending = await asyncio.wait(
                [asyncio.create_task(s.wait_closed()) for s in sessions],
                timeout=SHUTDOWN_TIMEOUT,
            )
            for task in pending:
                task.cancel()

    async def _on_app_shutdown(self, app: web.Application) -> None:
        await self.close_sessions()

    # =========================================================================
    # Broadcast
    # =========================================================================

    def _on_change(self, change: StateChange) -> None:
        events = events_for_change(change)
        if not events:
            return
        for session in self.active_sessions:
            for event in events:
                session.send(event)

    # =========================================================================
    # HTTP Handlers
    # =========================================================================

    async def _handle_credentials(self, request: web.Request) -> web.Response:
        """Echo the Basic authorization header the caller presented."""
        header = request.headers.get("Authorization", "")
        if self.config.requires_auth and not self._check_header(header):
            return web.Response(
                status=401,
                text="Unauthorized",
                headers={"WWW-Authenticate": f'Basic realm="{AUTH_REALM}"'},
            )
        return web.Response(text=header)

    async def _handle_root(self, request: web.Request) -> web.StreamResponse:
        ws = web.WebSocketResponse(heartbeat=30.0)
        if not ws.can_prepare(request).ok:
            return web.Response(text=BANNER)
        await ws.prepare(request)

        session = RemoteSession(ws, remote=request.remote or "", queue_size=self.config.outbound_queue_size)
        self._sessions.add(session)
        session.start()
        logger.info(f"Remote client connected: {session}")

        if self.config.requires_auth:
            session.watch_auth(self.config.auth_timeout)
        else:
            self._activate(session)

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self._handle_text(session, msg.data)
                elif msg.type == WSMsgType.BINARY:
                    self._reject(session, "Binary messages are not supported")
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(f"{session}: connection error: {ws.exception()}")
                    break
        finally:
            self._sessions.discard(session)
            if session.state in (SessionState.CLOSING, SessionState.CLOSED):
                await session.wait_closed()
            else:
                await session.abort()
            logger.info(f"Remote client disconnected: {session} (code {ws.close_code})")

        return ws

    # =========================================================================
    # Session Messages
    # =========================================================================

    async def _handle_text(self, session: RemoteSession, text: str) -> None:
        if not session.is_open:
            return
        try:
            message = decode_client_message(text)
        except ProtocolError as e:
            self._reject(session, str(e))
            return

        if message.event == AUTHENTICATE:
            self._authenticate(session, message.get("header"))
            return

        if not session.is_active:
            session.send(error_event("Not authenticated"))
            return

        for reply in await self.handler.handle_message(message):
            session.send(reply)

    def _authenticate(self, session: RemoteSession, header: object) -> None:
        if session.is_active:
            return
        if isinstance(header, str) and self._check_header(header):
            logger.info(f"{session}: authenticated")
            self._activate(session)
            return

        logger.warning(f"{session}: authentication rejected")
        session.send(error_event("Invalid credentials"))
        session.close(CloseCode.AUTH_REJECTED, "authentication rejected")

    def _activate(self, session: RemoteSession) -> None:
        session.activate()
        session.send(state_event(self.engine.snapshot()))

        if self.config.exclusive:
            for other in self.sessions:
                if other is not session and other.is_open:
                    logger.info(f"{other}: superseded by {session}")
                    other.close(CloseCode.SUPERSEDED, "superseded")

    def _reject(self, session: RemoteSession, reason: str) -> None:
        logger.warning(f"{session}: protocol error: {reason}")
        session.send(error_event(reason))
        session.close(CloseCode.AUTH_TIMEOUT, "protocol mismatch")

    def _check_header(self, header: str) -> bool:
        return hmac.compare_digest(header.encode(), self._expected_header.encode())
