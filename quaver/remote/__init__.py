"""
Remote control module.

WebSocket server broadcasting player state to authenticated subscribers,
plus a matching client.
"""

from .client import RemoteClient, RemoteInfo
from .command_handler import CommandError, RemoteCommandHandler
from .protocol import (
    ClientMessage,
    CloseCode,
    CloseKind,
    ProtocolError,
    ServerEvent,
    classify_close,
    decode_client_message,
    decode_server_event,
    events_for_change,
)
from .server import RemoteServer, basic_auth_header
from .session import RemoteSession, SessionState

__all__ = [
    # Protocol
    "ClientMessage",
    "CloseCode",
    "CloseKind",
    "ProtocolError",
    "ServerEvent",
    "classify_close",
    "decode_client_message",
    "decode_server_event",
    "events_for_change",
    # Server
    "CommandError",
    "RemoteCommandHandler",
    "RemoteServer",
    "RemoteSession",
    "SessionState",
    "basic_auth_header",
    # Client
    "RemoteClient",
    "RemoteInfo",
]
