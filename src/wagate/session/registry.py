"""
Session registry.

Owns the map from session key to Session and every operation that mutates
it. Creation and teardown for a key run under that key's lock, so two
overlapping starts produce a single connection and a disconnect issued while
a connect is still pending tears the connection down once it exists.

Reconnects after a recoverable close are scheduled here as timer tasks,
following the ReconnectPolicy of the lifecycle state machine.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

from wagate.errors import ConnectionFailure, SessionNotConnected
from wagate.logger import get_logger
from wagate.phone import BRAZIL, NumberingPlan, to_jid
from wagate.protocol.base import ProtocolClient
from wagate.protocol.credentials import FileCredentialStore
from wagate.session.lifecycle import (
    Effect,
    ReconnectPolicy,
    SessionLifecycle,
    SessionState,
    Transition,
)
from wagate.session.session import Session
from wagate.validation import validate_session_id

logger = get_logger(__name__)

ClientFactory = Callable[[str, dict[str, Any]], ProtocolClient]


class SessionRegistry:
    """
    Central coordinator for all protocol sessions.

    Args:
        client_factory: Builds a protocol client from a session key and its
            stored credentials.
        credential_store: Loads, saves and clears per-session credentials.
        policy: Reconnect policy for recoverable disconnects.
        numbering_plan: Rules used to normalize destination numbers.
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        credential_store: FileCredentialStore,
        policy: Optional[ReconnectPolicy] = None,
        numbering_plan: NumberingPlan = BRAZIL,
    ):
        self.client_factory = client_factory
        self.credential_store = credential_store
        self.lifecycle = SessionLifecycle(policy)
        self.numbering_plan = numbering_plan
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        # Sessions removed from the map whose transport is still closing
        self._detaching: dict[str, Session] = {}
        self._reconnect_tasks: dict[str, asyncio.Task] = {}
        self._attempts: dict[str, int] = {}
        self._closing = False

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    @asynccontextmanager
    async def _key_lock(self, session_id: str):
        """
        Hold the lock for one session key.

        The lock is dropped from the map once nobody holds or waits for it.
        """
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if not self._lock_users[session_id]:
                del self._lock_users[session_id]
                del self._locks[session_id]

    # ─── Lookup ──────────────────────────────────────────────────────

    def get_session(self, session_id: str) -> Optional[Session]:
        """Return the registered session for a key, or None."""
        return self._sessions.get(session_id)

    def list_sessions(self) -> list[dict[str, Any]]:
        return [session.to_dict() for session in self._sessions.values()]

    @property
    def connected_count(self) -> int:
        """Number of sessions currently open."""
        return sum(1 for s in self._sessions.values() if s.connected)

    def reconnect_pending(self, session_id: str) -> bool:
        task = self._reconnect_tasks.get(session_id)
        return task is not None and not task.done()

    # ─── Start ───────────────────────────────────────────────────────

    async def start_session(self, session_id: str) -> Session:
        """
        Return the live session for a key, creating it if needed.

        Raises:
            ValidationError: If the session id is malformed.
            ConnectionFailure: If the protocol client cannot connect.
        """
        validate_session_id(session_id)

        session = self._sessions.get(session_id)
        if session:
            logger.debug(f"Session '{session_id}' is already running")
            return session

        async with self._key_lock(session_id):
            session = self._sessions.get(session_id)
            if session:
                return session
            if self._closing:
                raise ConnectionFailure("Registry is shutting down")
            return await self._create_session(session_id)

    async def _create_session(self, session_id: str) -> Session:
        creds = await self.credential_store.load(session_id)
        client = self.client_factory(session_id, creds)

        async def save_credentials(new_creds: dict[str, Any]) -> None:
            await self.credential_store.save(session_id, new_creds)

        session = Session(
            session_id,
            client,
            self.lifecycle,
            on_credentials=save_credentials,
            on_transition=self._handle_transition,
            has_credentials=bool(creds),
        )

        try:
            await client.connect()
        except asyncio.CancelledError:
            await client.close()
            raise
        except Exception as e:
            await client.close()
            if isinstance(e, ConnectionFailure):
                raise
            raise ConnectionFailure(
                f"Failed to start session '{session_id}': {e}"
            ) from e

        self._sessions[session_id] = session
        session.start()
        self._cancel_reconnect(session_id)
        logger.info(f"Session '{session_id}' started ({session.state.value})")
        return session

    # ─── Lifecycle effects ───────────────────────────────────────────

    async def _handle_transition(self, session: Session, transition: Transition) -> None:
        session_id = session.session_id
        removed = False

        for effect in transition.effects:
            if effect is Effect.RESET_BACKOFF:
                self._attempts.pop(session_id, None)

            elif effect is Effect.REMOVE:
                if self._sessions.get(session_id) is session:
                    del self._sessions[session_id]
                    self._detaching[session_id] = session
                    removed = True
                try:
                    await session.client.close()
                except Exception as e:
                    logger.error(f"Error closing session '{session_id}': {e}")
                finally:
                    if self._detaching.get(session_id) is session:
                        del self._detaching[session_id]

            elif effect is Effect.FORGET_CREDENTIALS:
                logger.info(f"Session '{session_id}' logged out, not reconnecting")
                self._attempts.pop(session_id, None)
                try:
                    await self.credential_store.clear(session_id)
                except Exception as e:
                    logger.error(f"Failed to clear credentials for '{session_id}': {e}")

            elif effect is Effect.RECONNECT:
                if removed and not session.disconnect_requested and not self._closing:
                    self._schedule_reconnect(session_id, transition.status_code)

    def _schedule_reconnect(self, session_id: str, status_code: Optional[int]) -> None:
        if self.reconnect_pending(session_id):
            return

        immediate = self.lifecycle.policy.is_immediate(status_code)
        attempt = self._attempts.get(session_id, 0) + (0 if immediate else 1)
        delay = self.lifecycle.reconnect_delay(status_code, attempt)

        if delay is None:
            logger.warning(
                f"Giving up on session '{session_id}' after "
                f"{self.lifecycle.policy.max_attempts} reconnect attempts"
            )
            self._attempts.pop(session_id, None)
            return

        self._attempts[session_id] = attempt
        logger.info(
            f"Reconnecting session '{session_id}' in {delay:.1f}s (attempt {attempt})"
        )
        self._reconnect_tasks[session_id] = asyncio.create_task(
            self._reconnect(session_id, delay), name=f"session-reconnect-{session_id}"
        )

    async def _reconnect(self, session_id: str, delay: float) -> None:
        try:
            if delay:
                await asyncio.sleep(delay)
            await self.start_session(session_id)
        except ConnectionFailure as e:
            logger.warning(f"Reconnect of session '{session_id}' failed: {e}")
            self._reconnect_tasks.pop(session_id, None)
            if not self._closing:
                self._schedule_reconnect(session_id, None)
        finally:
            if self._reconnect_tasks.get(session_id) is asyncio.current_task():
                del self._reconnect_tasks[session_id]

    def _cancel_reconnect(self, session_id: str) -> None:
        task = self._reconnect_tasks.pop(session_id, None)
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ─── Messaging ───────────────────────────────────────────────────

    async def send_message(self, session_id: str, address: str, body: str) -> str:
        """
        Send a text message through a session.

        Returns:
            The protocol address the message was sent to.

        Raises:
            SessionNotConnected: If the session is absent or not yet paired.
            InvalidNumberFormat: If the address cannot be normalized.
            ConnectionFailure: If the protocol client fails to send.
        """
        session = self._sessions.get(session_id)
        if session is None or session.state is SessionState.PAIRING:
            raise SessionNotConnected(session_id)

        jid = to_jid(address, self.numbering_plan)

        try:
            await session.client.send_text(jid, body)
        except ConnectionFailure:
            raise
        except Exception as e:
            raise ConnectionFailure(f"Failed to send message to {jid}: {e}") from e

        logger.info(f"Message sent to {jid} via session '{session_id}'")
        return jid

    # ─── Teardown ────────────────────────────────────────────────────

    async def disconnect_session(self, session_id: str) -> bool:
        """
        Log out and close a session.

        Waits for an in-flight start of the same key, so a connection that is
        still being established is torn down once it exists.

        A session that already dropped out of the map and is still closing
        its transport is marked so it does not reconnect.

        Returns:
            True if a session was disconnected, False if the key was absent.

        Raises:
            ValidationError: If the session id is malformed.
            ConnectionFailure: If logout failed. The transport is closed and
                the session removed regardless.
        """
        validate_session_id(session_id)
        self._cancel_reconnect(session_id)
        self._attempts.pop(session_id, None)

        detaching = self._detaching.get(session_id)
        if detaching is not None:
            detaching.disconnect_requested = True

        async with self._key_lock(session_id):
            session = self._sessions.pop(session_id, None)
            if session is None:
                if detaching is not None:
                    logger.info(f"Session '{session_id}' will not be reconnected")
                return detaching is not None

            await session.stop_events()
            try:
                await session.client.logout()
            except Exception as e:
                await session.client.close()
                raise ConnectionFailure(
                    f"Logout of session '{session_id}' failed: {e}"
                ) from e

            await session.client.close()
            try:
                await self.credential_store.clear(session_id)
            except Exception as e:
                logger.error(f"Failed to clear credentials for '{session_id}': {e}")

        logger.info(f"Session '{session_id}' disconnected")
        return True

    async def disconnect_all(self) -> int:
        """
        Disconnect every session, best effort.

        Returns:
            Number of sessions that were disconnected without error.
        """
        session_ids = set(self._sessions) | set(self._reconnect_tasks)
        disconnected = 0

        for session_id in session_ids:
            try:
                if await self.disconnect_session(session_id):
                    disconnected += 1
            except Exception as e:
                logger.error(f"Error disconnecting session '{session_id}': {e}")

        logger.info(f"Disconnected {disconnected}/{len(session_ids)} sessions")
        return disconnected

    async def shutdown(self) -> None:
        """
        Close every transport without logging out.

        Credentials stay on disk so sessions can be restarted after the
        process comes back.
        """
        self._closing = True

        for session_id in list(self._reconnect_tasks):
            self._cancel_reconnect(session_id)

        for session_id in list(self._sessions):
            async with self._key_lock(session_id):
                session = self._sessions.pop(session_id, None)
                if session is None:
                    continue
                try:
                    await session.close()
                except Exception as e:
                    logger.error(f"Error closing session '{session_id}': {e}")

        logger.info("Session registry shut down")
