"""
Unit tests for the SessionRegistry.
"""

import asyncio

import pytest

from tests.conftest import wait_until
from wagate.errors import (
    ConnectionFailure,
    InvalidNumberFormat,
    SessionNotConnected,
    ValidationError,
)
from wagate.protocol.base import (
    ConnectionStatus,
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
)
from wagate.session.lifecycle import ReconnectPolicy, SessionState
from wagate.session.registry import SessionRegistry

OPEN = ConnectionUpdate(connection=ConnectionStatus.OPEN)


def closed(code):
    return ConnectionUpdate(connection=ConnectionStatus.CLOSE, status_code=int(code))


async def open_session(registry, session_id):
    session = await registry.start_session(session_id)
    session.client.push(OPEN)
    await wait_until(lambda: session.connected)
    return session


class TestStartSession:
    @pytest.mark.asyncio
    async def test_start_registers_session(self, registry, factory):
        session = await registry.start_session("tenant-a")

        assert registry.get_session("tenant-a") is session
        assert "tenant-a" in registry
        assert len(factory.clients) == 1
        assert factory.clients[0].connect_calls == 1
        assert session.state is SessionState.PAIRING

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, registry, factory):
        first = await registry.start_session("tenant-a")
        second = await registry.start_session("tenant-a")

        assert first is second
        assert len(factory.clients) == 1
        assert factory.clients[0].connect_calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_starts_create_one_connection(self, registry, factory):
        factory.gate = asyncio.Event()

        first = asyncio.create_task(registry.start_session("A"))
        second = asyncio.create_task(registry.start_session("A"))
        await asyncio.sleep(0.01)
        factory.gate.set()
        s1, s2 = await asyncio.gather(first, second)

        assert s1 is s2
        assert len(factory.clients) == 1
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_start_loads_stored_credentials(self, registry, factory, credential_store):
        await credential_store.save("tenant-a", {"me": "5511987654321"})

        session = await registry.start_session("tenant-a")

        assert factory.clients[0].creds == {"me": "5511987654321"}
        assert session.state is SessionState.CONNECTING

    @pytest.mark.asyncio
    async def test_connect_failure_leaves_no_entry(self, registry, factory):
        factory.fail_connect = True

        with pytest.raises(ConnectionFailure):
            await registry.start_session("tenant-a")

        assert "tenant-a" not in registry
        assert factory.clients[0].closed

    @pytest.mark.asyncio
    async def test_invalid_session_id(self, registry, factory):
        with pytest.raises(ValidationError):
            await registry.start_session("../etc")
        assert factory.clients == []

    @pytest.mark.asyncio
    async def test_get_unknown_session(self, registry):
        assert registry.get_session("missing") is None


class TestEventHandling:
    @pytest.mark.asyncio
    async def test_pairing_code_rendered_and_cleared_on_open(self, registry):
        session = await registry.start_session("tenant-a")

        session.client.push(ConnectionUpdate(qr="2@pairing-code"))
        await wait_until(lambda: session.pairing_artifact is not None)
        assert session.pairing_artifact.startswith("data:image/png;base64,")
        assert not session.connected

        session.client.push(OPEN)
        await wait_until(lambda: session.connected)
        assert session.pairing_artifact is None

    @pytest.mark.asyncio
    async def test_credentials_persisted_in_order(self, registry, credential_store):
        session = await registry.start_session("tenant-a")

        session.client.push(CredentialsUpdate(creds={"v": 1}))
        session.client.push(CredentialsUpdate(creds={"v": 2}))
        session.client.push(OPEN)
        await wait_until(lambda: session.connected)

        assert await credential_store.load("tenant-a") == {"v": 2}

    @pytest.mark.asyncio
    async def test_logged_out_is_not_recreated(self, registry, factory, credential_store):
        await credential_store.save("tenant-a", {"me": "x"})
        session = await open_session(registry, "tenant-a")

        session.client.push(closed(DisconnectReason.LOGGED_OUT))
        await wait_until(lambda: "tenant-a" not in registry)
        await asyncio.sleep(0.05)

        assert "tenant-a" not in registry
        assert not registry.reconnect_pending("tenant-a")
        assert len(factory.clients) == 1
        assert session.state is SessionState.CLOSED_TERMINAL
        assert session.client.closed
        assert not credential_store.exists("tenant-a")

    @pytest.mark.asyncio
    async def test_recoverable_close_reconnects(self, registry, factory):
        session = await open_session(registry, "tenant-a")

        session.client.push(closed(DisconnectReason.CONNECTION_LOST))
        await wait_until(
            lambda: registry.get_session("tenant-a") not in (None, session)
        )

        assert len(factory.clients) == 2
        assert session.state is SessionState.CLOSED_RECOVERABLE
        assert session.client.closed
        assert not factory.clients[1].closed

    @pytest.mark.asyncio
    async def test_failing_transport_close_still_reconnects(self, registry, factory):
        factory.options["tenant-a"] = {"fail_close": True}
        session = await open_session(registry, "tenant-a")

        session.client.push(closed(DisconnectReason.CONNECTION_LOST))
        await wait_until(
            lambda: registry.get_session("tenant-a") not in (None, session)
        )

        assert len(factory.clients) == 2

    @pytest.mark.asyncio
    async def test_restart_required_reconnects_immediately(self, factory, credential_store):
        registry = SessionRegistry(
            factory, credential_store, ReconnectPolicy(base_delay=30.0, max_attempts=1)
        )
        try:
            session = await registry.start_session("tenant-a")
            session.client.push(closed(DisconnectReason.RESTART_REQUIRED))
            await wait_until(lambda: len(factory.clients) == 2 and "tenant-a" in registry)
        finally:
            await registry.shutdown()

    @pytest.mark.asyncio
    async def test_reconnect_gives_up_after_max_attempts(self, registry, factory):
        session = await open_session(registry, "tenant-a")
        factory.fail_connect = True

        session.client.push(closed(DisconnectReason.CONNECTION_CLOSED))
        # one original client plus three failed reconnect attempts
        await wait_until(lambda: len(factory.clients) == 4)
        await wait_until(lambda: not registry.reconnect_pending("tenant-a"))
        await asyncio.sleep(0.05)

        assert len(factory.clients) == 4
        assert "tenant-a" not in registry

    @pytest.mark.asyncio
    async def test_backoff_resets_after_open(self, registry, factory):
        session = await open_session(registry, "tenant-a")

        for _ in range(5):
            session.client.push(closed(DisconnectReason.CONNECTION_LOST))
            await wait_until(
                lambda: registry.get_session("tenant-a") not in (None, session)
            )
            session = registry.get_session("tenant-a")
            session.client.push(OPEN)
            await wait_until(lambda: session.connected)

        assert len(factory.clients) == 6

    @pytest.mark.asyncio
    async def test_broken_event_stream_counts_as_lost_connection(self, registry, factory):
        session = await open_session(registry, "tenant-a")

        async def broken_events():
            raise RuntimeError("stream exploded")
            yield  # pragma: no cover

        await session.stop_events()
        session.client.events = broken_events
        session._pump = None
        session.start()

        await wait_until(lambda: registry.get_session("tenant-a") not in (None, session))
        assert session.state is SessionState.CLOSED_RECOVERABLE


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_send_on_unknown_session(self, registry, factory):
        with pytest.raises(SessionNotConnected):
            await registry.send_message("never-started", "11987654321", "hi")
        assert factory.clients == []

    @pytest.mark.asyncio
    async def test_send_before_pairing(self, registry, factory):
        await registry.start_session("tenant-a")
        with pytest.raises(SessionNotConnected):
            await registry.send_message("tenant-a", "11987654321", "hi")
        assert factory.clients[0].sent == []

    @pytest.mark.asyncio
    async def test_send_normalizes_address(self, registry):
        session = await open_session(registry, "tenant-a")

        jid = await registry.send_message("tenant-a", "(11) 8765-4321", "hello")

        assert jid == "5511987654321@s.whatsapp.net"
        assert session.client.sent == [("5511987654321@s.whatsapp.net", "hello")]

    @pytest.mark.asyncio
    async def test_send_invalid_number(self, registry):
        session = await open_session(registry, "tenant-a")
        with pytest.raises(InvalidNumberFormat):
            await registry.send_message("tenant-a", "123", "hello")
        assert session.client.sent == []

    @pytest.mark.asyncio
    async def test_send_failure_wrapped(self, registry, factory):
        factory.options["tenant-a"] = {"fail_send": True}
        await open_session(registry, "tenant-a")
        with pytest.raises(ConnectionFailure, match="socket write failed"):
            await registry.send_message("tenant-a", "11987654321", "hello")


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_disconnect_unknown_is_noop(self, registry, factory):
        assert await registry.disconnect_session("missing") is False
        assert factory.clients == []

    @pytest.mark.asyncio
    async def test_disconnect_logs_out_and_removes(self, registry, credential_store):
        await credential_store.save("tenant-a", {"me": "x"})
        session = await open_session(registry, "tenant-a")

        assert await registry.disconnect_session("tenant-a") is True

        assert "tenant-a" not in registry
        assert session.client.logged_out
        assert session.client.closed
        assert not credential_store.exists("tenant-a")

    @pytest.mark.asyncio
    async def test_disconnect_invalid_id(self, registry):
        with pytest.raises(ValidationError):
            await registry.disconnect_session("../etc")
        assert registry._locks == {}

    @pytest.mark.asyncio
    async def test_key_locks_released(self, registry, factory):
        await registry.disconnect_session("missing")
        assert registry._locks == {}

        factory.fail_connect = True
        with pytest.raises(ConnectionFailure):
            await registry.start_session("broken")
        assert registry._locks == {}

        factory.fail_connect = False
        await registry.start_session("tenant-a")
        await registry.disconnect_session("tenant-a")
        assert registry._locks == {}
        assert registry._lock_users == {}

    @pytest.mark.asyncio
    async def test_disconnect_while_transport_closing_prevents_reconnect(
        self, registry, factory
    ):
        close_gate = asyncio.Event()
        factory.options["tenant-a"] = {"close_gate": close_gate}
        session = await open_session(registry, "tenant-a")

        session.client.push(closed(DisconnectReason.CONNECTION_LOST))
        await wait_until(lambda: "tenant-a" not in registry)

        assert await registry.disconnect_session("tenant-a") is True
        close_gate.set()
        await asyncio.sleep(0.05)

        assert "tenant-a" not in registry
        assert not registry.reconnect_pending("tenant-a")
        assert len(factory.clients) == 1

    @pytest.mark.asyncio
    async def test_disconnect_twice(self, registry):
        await registry.start_session("tenant-a")
        assert await registry.disconnect_session("tenant-a") is True
        assert await registry.disconnect_session("tenant-a") is False

    @pytest.mark.asyncio
    async def test_logout_failure_still_tears_down(self, registry, factory):
        factory.options["tenant-a"] = {"fail_logout": True}
        session = await registry.start_session("tenant-a")

        with pytest.raises(ConnectionFailure, match="logout rejected"):
            await registry.disconnect_session("tenant-a")

        assert "tenant-a" not in registry
        assert session.client.closed

    @pytest.mark.asyncio
    async def test_disconnect_during_pending_connect(self, registry, factory):
        factory.gate = asyncio.Event()

        start = asyncio.create_task(registry.start_session("tenant-a"))
        await asyncio.sleep(0.01)
        disconnect = asyncio.create_task(registry.disconnect_session("tenant-a"))
        await asyncio.sleep(0.01)
        factory.gate.set()

        await start
        assert await disconnect is True
        client = factory.clients[0]
        assert client.logged_out
        assert client.closed
        assert "tenant-a" not in registry

    @pytest.mark.asyncio
    async def test_disconnect_cancels_pending_reconnect(self, factory, credential_store):
        registry = SessionRegistry(
            factory, credential_store, ReconnectPolicy(base_delay=30.0)
        )
        try:
            session = await registry.start_session("tenant-a")
            session.client.push(closed(DisconnectReason.CONNECTION_LOST))
            await wait_until(lambda: registry.reconnect_pending("tenant-a"))

            await registry.disconnect_session("tenant-a")

            assert not registry.reconnect_pending("tenant-a")
            assert len(factory.clients) == 1
        finally:
            await registry.shutdown()

    @pytest.mark.asyncio
    async def test_disconnect_all_is_best_effort(self, registry, factory):
        factory.options["B"] = {"fail_logout": True}
        for session_id in ("A", "B", "C"):
            await registry.start_session(session_id)

        disconnected = await registry.disconnect_all()

        assert disconnected == 2
        assert len(registry) == 0
        assert all(client.closed for client in factory.clients)
        assert factory.for_session("A")[0].logged_out
        assert factory.for_session("C")[0].logged_out

    @pytest.mark.asyncio
    async def test_shutdown_keeps_credentials(self, registry, factory, credential_store):
        await credential_store.save("tenant-a", {"me": "x"})
        await registry.start_session("tenant-a")

        await registry.shutdown()

        assert len(registry) == 0
        assert factory.clients[0].closed
        assert not factory.clients[0].logged_out
        assert credential_store.exists("tenant-a")
        with pytest.raises(ConnectionFailure):
            await registry.start_session("tenant-a")
