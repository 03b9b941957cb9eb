"""
Base classes and event types for protocol clients.

A protocol client owns one authenticated connection to the chat network.
It is driven by the session registry and reports what happens on the wire as
an ordered stream of events.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, AsyncIterator, Optional, Union


class DisconnectReason(IntEnum):
    """Status codes the protocol reports when a connection closes."""

    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    TIMED_OUT = 408
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSE = "close"


@dataclass
class ConnectionUpdate:
    """
    Change in the connection as reported by the protocol.

    Any combination of fields may be set; ``qr`` carries a fresh pairing code
    and ``status_code`` is only meaningful when ``connection`` is CLOSE.
    """

    connection: Optional[ConnectionStatus] = None
    qr: Optional[str] = None
    status_code: Optional[int] = None
    error: Optional[str] = None


@dataclass
class CredentialsUpdate:
    """New credential material that must be persisted."""

    creds: dict[str, Any] = field(default_factory=dict)


ProtocolEvent = Union[ConnectionUpdate, CredentialsUpdate]


class ProtocolClient(ABC):
    """
    Abstract connection to the chat network for one session.

    Lifecycle: ``connect()`` once, iterate ``events()`` until it ends, then
    ``close()``. ``logout()`` invalidates the credentials server-side.
    """

    def __init__(self, session_id: str, creds: Optional[dict[str, Any]] = None):
        self.session_id = session_id
        self.creds: dict[str, Any] = creds or {}

    @abstractmethod
    async def connect(self) -> None:
        """Open the transport and hand the stored credentials to the network."""
        pass

    @abstractmethod
    def events(self) -> AsyncIterator[ProtocolEvent]:
        """Yield protocol events in the order the connection emits them."""
        pass

    @abstractmethod
    async def send_text(self, jid: str, text: str) -> None:
        """Send a text message to a protocol address."""
        pass

    @abstractmethod
    async def logout(self) -> None:
        """Invalidate this device's credentials on the network."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the transport. Safe to call more than once."""
        pass
