"""
Protocol client layer.

A protocol client is the connection to the chat network for one session.
The registry only talks to the abstract ProtocolClient; BridgeProtocolClient
is the WebSocket implementation used by the server.
"""

from wagate.protocol.base import (
    ConnectionStatus,
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
    ProtocolClient,
    ProtocolEvent,
)
from wagate.protocol.bridge import BridgeProtocolClient
from wagate.protocol.credentials import FileCredentialStore

__all__ = [
    "BridgeProtocolClient",
    "ConnectionStatus",
    "ConnectionUpdate",
    "CredentialsUpdate",
    "DisconnectReason",
    "FileCredentialStore",
    "ProtocolClient",
    "ProtocolEvent",
]
