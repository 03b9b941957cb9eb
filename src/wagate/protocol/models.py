"""
Pydantic models for the protocol bridge.

Covers the JSON messages exchanged with the bridge process over one
WebSocket per session:
- client → bridge: connect, send, logout
- bridge → client: connection.update, creds.update, result, error
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


# ─── Client → Bridge ─────────────────────────────────────────────────


class ConnectMessage(BaseModel):
    """Open the session on the bridge with any stored credentials."""

    type: str = "connect"
    session_id: str
    creds: dict[str, Any] = Field(default_factory=dict)


class SendMessage(BaseModel):
    """Send a text message to a protocol address."""

    type: str = "send"
    request_id: str
    jid: str
    text: str


class LogoutMessage(BaseModel):
    """Invalidate the session's credentials on the network."""

    type: str = "logout"
    request_id: str


# ─── Bridge → Client ─────────────────────────────────────────────────


class ConnectionUpdateMessage(BaseModel):
    type: str = "connection.update"
    connection: Optional[str] = None
    qr: Optional[str] = None
    status_code: Optional[int] = None
    error: Optional[str] = None


class CredsUpdateMessage(BaseModel):
    type: str = "creds.update"
    creds: dict[str, Any] = Field(default_factory=dict)


class ResultMessage(BaseModel):
    """Response to a send or logout request."""

    type: str = "result"
    request_id: str
    success: bool = False
    error: Optional[str] = None


class ErrorMessage(BaseModel):
    type: str = "error"
    message: str
