"""Shared pytest fixtures and fakes."""

import asyncio
from typing import Any, Optional

import pytest
import pytest_asyncio

from wagate.errors import ConnectionFailure
from wagate.protocol.base import ProtocolClient
from wagate.protocol.credentials import FileCredentialStore
from wagate.session.lifecycle import ReconnectPolicy
from wagate.session.registry import SessionRegistry


class FakeProtocolClient(ProtocolClient):
    """In-memory protocol client driven by the test through ``push``."""

    def __init__(
        self,
        session_id: str,
        creds: Optional[dict[str, Any]] = None,
        gate: Optional[asyncio.Event] = None,
        fail_connect: bool = False,
        fail_logout: bool = False,
        fail_send: bool = False,
        fail_close: bool = False,
        close_gate: Optional[asyncio.Event] = None,
    ):
        super().__init__(session_id, creds)
        self.gate = gate
        self.fail_connect = fail_connect
        self.fail_logout = fail_logout
        self.fail_send = fail_send
        self.fail_close = fail_close
        self.close_gate = close_gate
        self.connect_calls = 0
        self.logged_out = False
        self.closed = False
        self.sent: list[tuple[str, str]] = []
        self._queue: asyncio.Queue = asyncio.Queue()

    def push(self, event) -> None:
        self._queue.put_nowait(event)

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_connect:
            raise ConnectionFailure("bridge unreachable")

    async def events(self):
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def send_text(self, jid: str, text: str) -> None:
        if self.fail_send:
            raise RuntimeError("socket write failed")
        self.sent.append((jid, text))

    async def logout(self) -> None:
        if self.fail_logout:
            raise RuntimeError("logout rejected")
        self.logged_out = True

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(None)
        if self.close_gate is not None:
            await self.close_gate.wait()
        if self.fail_close:
            raise RuntimeError("transport already broken")


class FakeClientFactory:
    """Builds FakeProtocolClients and remembers every one it built."""

    def __init__(self):
        self.clients: list[FakeProtocolClient] = []
        self.options: dict[str, dict[str, Any]] = {}
        self.gate: Optional[asyncio.Event] = None
        self.fail_connect = False

    def __call__(self, session_id: str, creds: dict[str, Any]) -> FakeProtocolClient:
        options = {"gate": self.gate, "fail_connect": self.fail_connect}
        options.update(self.options.get(session_id, {}))
        client = FakeProtocolClient(session_id, creds, **options)
        self.clients.append(client)
        return client

    def for_session(self, session_id: str) -> list[FakeProtocolClient]:
        return [c for c in self.clients if c.session_id == session_id]


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the event loop until it is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def factory():
    return FakeClientFactory()


@pytest.fixture
def credential_store(tmp_path):
    return FileCredentialStore(tmp_path / "auth_info")


@pytest.fixture
def policy():
    return ReconnectPolicy(base_delay=0.0, max_delay=0.0, max_attempts=3)


@pytest_asyncio.fixture
async def registry(factory, credential_store, policy):
    registry = SessionRegistry(factory, credential_store, policy)
    yield registry
    await registry.shutdown()
