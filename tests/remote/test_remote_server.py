"""Tests for the remote control server and its sessions."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import WSMsgType, test_utils

from quaver.config import RemoteConfig
from quaver.playback.models import EngineState
from quaver.remote.protocol import CloseCode, ServerEvent
from quaver.remote.server import BANNER, RemoteServer, basic_auth_header
from quaver.remote.session import RemoteSession, SessionState

USERNAME = "listener"
PASSWORD = "secret"
GOOD_HEADER = basic_auth_header(USERNAME, PASSWORD)


@pytest.fixture
async def make_remote(engine):
    """Factory for a remote server on a test client, closed after the test."""
    clients = []

    async def factory(**config):
        server = RemoteServer(engine, RemoteConfig(**config))
        client = test_utils.TestClient(test_utils.TestServer(server.build_app()))
        await client.start_server()
        clients.append(client)
        return server, client

    yield factory
    for client in clients:
        await client.close()


async def _event(ws) -> dict:
    msg = await ws.receive(timeout=2.0)
    assert msg.type == WSMsgType.TEXT, msg
    return json.loads(msg.data)


async def _close_code(ws) -> int:
    msg = await ws.receive(timeout=2.0)
    assert msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSED), msg
    return ws.close_code


class TestHttpEndpoints:
    """Tests for plain HTTP requests."""

    @pytest.mark.asyncio
    async def test_banner(self, make_remote) -> None:
        """Test a plain GET on the endpoint returns the banner."""
        _, client = await make_remote()
        response = await client.get("/")
        assert response.status == 200
        assert await response.text() == BANNER

    @pytest.mark.asyncio
    async def test_credentials_rejected(self, make_remote) -> None:
        """Test missing credentials get a Basic challenge."""
        _, client = await make_remote(username=USERNAME, password=PASSWORD)
        response = await client.get("/credentials")
        assert response.status == 401
        assert response.headers["WWW-Authenticate"] == 'Basic realm="quaver"'

    @pytest.mark.asyncio
    async def test_credentials_echoed(self, make_remote) -> None:
        """Test valid credentials are echoed back for the socket handshake."""
        _, client = await make_remote(username=USERNAME, password=PASSWORD)
        response = await client.get("/credentials", headers={"Authorization": GOOD_HEADER})
        assert response.status == 200
        assert await response.text() == GOOD_HEADER


class TestAuthentication:
    """Tests for session authentication."""

    @pytest.mark.asyncio
    async def test_no_auth_gets_state(self, make_remote) -> None:
        """Test sessions are active at once when no credentials are configured."""
        server, client = await make_remote()
        ws = await client.ws_connect("/")
        event = await _event(ws)
        assert event["event"] == "state"
        assert event["data"]["status"] == "PAUSED"
        assert event["data"]["song"] is None
        assert len(server.active_sessions) == 1
        await ws.close()

    @pytest.mark.asyncio
    async def test_valid_credentials(self, make_remote) -> None:
        """Test a good authenticate activates the session."""
        server, client = await make_remote(username=USERNAME, password=PASSWORD)
        ws = await client.ws_connect("/")
        await ws.send_json({"event": "authenticate", "header": GOOD_HEADER})
        assert (await _event(ws))["event"] == "state"
        await ws.close()

    @pytest.mark.asyncio
    async def test_invalid_credentials(self, make_remote, engine) -> None:
        """Test bad credentials get an error and close 4003 without touching the engine."""
        _, client = await make_remote(username=USERNAME, password=PASSWORD)
        ws = await client.ws_connect("/")
        await ws.send_json({"event": "authenticate", "header": basic_auth_header(USERNAME, "wrong")})
        assert await _event(ws) == {"event": "error", "data": "Invalid credentials"}
        assert await _close_code(ws) == CloseCode.AUTH_REJECTED
        assert engine.state is EngineState.EMPTY

    @pytest.mark.asyncio
    async def test_commands_need_auth(self, make_remote, engine, songs) -> None:
        """Test control events before authenticating are refused."""
        _, client = await make_remote(username=USERNAME, password=PASSWORD)
        ws = await client.ws_connect("/")
        await ws.send_json({"event": "pause"})
        assert await _event(ws) == {"event": "error", "data": "Not authenticated"}
        await ws.close()

    @pytest.mark.asyncio
    async def test_auth_timeout(self, make_remote) -> None:
        """Test a silent client is closed with 4002."""
        _, client = await make_remote(username=USERNAME, password=PASSWORD, auth_timeout=0.05)
        ws = await client.ws_connect("/")
        assert await _close_code(ws) == CloseCode.AUTH_TIMEOUT


class TestMessages:
    """Tests for message handling on active sessions."""

    @pytest.mark.asyncio
    async def test_protocol_error_closes(self, make_remote) -> None:
        """Test malformed frames are answered and the session closed."""
        _, client = await make_remote()
        ws = await client.ws_connect("/")
        await _event(ws)
        await ws.send_str("not json")
        assert (await _event(ws))["event"] == "error"
        assert await _close_code(ws) == CloseCode.AUTH_TIMEOUT

    @pytest.mark.asyncio
    async def test_binary_rejected(self, make_remote) -> None:
        """Test binary frames are a protocol error."""
        _, client = await make_remote()
        ws = await client.ws_connect("/")
        await _event(ws)
        await ws.send_bytes(b"\x00\x01")
        assert await _event(ws) == {"event": "error", "data": "Binary messages are not supported"}
        assert await _close_code(ws) == CloseCode.AUTH_TIMEOUT

    @pytest.mark.asyncio
    async def test_command_reply_to_sender(self, make_remote) -> None:
        """Test handler errors go back to the requesting session."""
        _, client = await make_remote()
        ws = await client.ws_connect("/")
        await _event(ws)
        await ws.send_json({"event": "proxy"})
        assert await _event(ws) == {"event": "error", "data": "No cover art available"}
        await ws.close()

    @pytest.mark.asyncio
    async def test_broadcast_after_change(self, make_remote, engine, songs) -> None:
        """Test engine changes reach every active session."""
        _, client = await make_remote()
        first = await client.ws_connect("/")
        second = await client.ws_connect("/")
        await _event(first)
        await _event(second)

        await engine.add(songs[:2])

        for ws in (first, second):
            song = await _event(ws)
            assert song["event"] == "song"
            assert song["data"]["id"] == "A"
            assert await _event(ws) == {"event": "playback", "data": "PLAYING"}
            assert (await _event(ws))["event"] == "position"
            await ws.close()

    @pytest.mark.asyncio
    async def test_remote_command_broadcasts(self, make_remote, engine, songs) -> None:
        """Test a command from one session is seen by the others."""
        await engine.add(songs[:2])
        _, client = await make_remote()
        sender = await client.ws_connect("/")
        watcher = await client.ws_connect("/")
        await _event(sender)
        await _event(watcher)

        await sender.send_json({"event": "volume", "volume": 20})
        assert await _event(watcher) == {"event": "volume", "data": 20}
        assert await _event(sender) == {"event": "volume", "data": 20}
        await sender.close()
        await watcher.close()


class TestSessionLifecycle:
    """Tests for superseding and shutdown."""

    @pytest.mark.asyncio
    async def test_exclusive_supersedes(self, make_remote) -> None:
        """Test a newer session replaces the older one with 4001."""
        server, client = await make_remote(exclusive=True)
        old = await client.ws_connect("/")
        await _event(old)
        new = await client.ws_connect("/")
        await _event(new)

        assert await _close_code(old) == CloseCode.SUPERSEDED
        assert len(server.active_sessions) == 1
        await new.close()

    @pytest.mark.asyncio
    async def test_stop_closes_with_shutdown(self, make_remote, engine) -> None:
        """Test stopping the server closes sessions with 4000."""
        server, client = await make_remote()
        ws = await client.ws_connect("/")
        await _event(ws)

        stopping = asyncio.create_task(server.stop())
        assert await _close_code(ws) == CloseCode.SERVER_SHUTDOWN
        await stopping
        assert server._on_change not in engine._listeners


class TestRemoteSession:
    """Tests for the per-session outbound queue."""

    @pytest.fixture
    def ws(self) -> MagicMock:
        mock = MagicMock()
        mock.closed = False
        mock.send_str = AsyncMock()
        mock.close = AsyncMock()
        return mock

    @pytest.mark.asyncio
    async def test_drop_oldest_when_full(self, ws) -> None:
        """Test a full queue discards the oldest event."""
        session = RemoteSession(ws, queue_size=2)
        for level in (1, 2, 3):
            session.send(ServerEvent("volume", level))
        assert session.pending == 2
        assert session.dropped == 1

        session.start()
        session.close(CloseCode.SERVER_SHUTDOWN, "server shutdown")
        await session.wait_closed()

        sent = [c.args[0] for c in ws.send_str.await_args_list]
        assert sent == ['{"event":"volume","data":2}', '{"event":"volume","data":3}']
        ws.close.assert_awaited_once_with(code=4000, message=b"server shutdown")
        assert session.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_first_close_wins(self, ws) -> None:
        """Test later closes and sends are ignored."""
        session = RemoteSession(ws)
        session.close(CloseCode.AUTH_REJECTED)
        session.close(CloseCode.SERVER_SHUTDOWN)
        assert session.close_code == CloseCode.AUTH_REJECTED
        assert session.send(ServerEvent("volume", 1)) is False

    @pytest.mark.asyncio
    async def test_activate_cancels_watchdog(self, ws) -> None:
        """Test authenticating in time keeps the session open."""
        session = RemoteSession(ws)
        session.watch_auth(0.01)
        assert session.state is SessionState.AUTHENTICATING
        session.activate()
        await asyncio.sleep(0.03)
        assert session.is_active
        assert session.close_code is None

    @pytest.mark.asyncio
    async def test_abort(self, ws) -> None:
        """Test abort stops the writer without a close frame."""
        session = RemoteSession(ws)
        session.start()
        session.send(ServerEvent("volume", 1))
        await session.abort()
        assert session.state is SessionState.CLOSED
        ws.close.assert_not_awaited()
