"""
A single managed protocol session.

Each Session owns its protocol client and runs one event pump task that reads
the client's event stream in order. Credential updates are persisted before
the next event is read; connection updates go through the lifecycle state
machine and any registry-level effects are handed to ``on_transition``.
"""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from wagate.logger import get_logger
from wagate.protocol.base import (
    ConnectionStatus,
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
    ProtocolClient,
)
from wagate.session.lifecycle import Effect, SessionLifecycle, SessionState, Transition
from wagate.session.pairing import render_pairing_artifact

logger = get_logger(__name__)

CredentialsCallback = Callable[[dict[str, Any]], Awaitable[None]]
TransitionCallback = Callable[["Session", Transition], Awaitable[None]]

_SESSION_LOCAL_EFFECTS = {Effect.STORE_PAIRING, Effect.CLEAR_PAIRING}


class Session:
    """
    One tenant's connection to the chat network.

    Args:
        session_id: Tenant-supplied session key.
        client: Protocol client, exclusively owned by this session.
        lifecycle: State machine used to interpret connection updates.
        on_credentials: Called with every credential update.
        on_transition: Called with transitions that carry registry effects.
        has_credentials: Whether stored credentials were found at start.
    """

    def __init__(
        self,
        session_id: str,
        client: ProtocolClient,
        lifecycle: SessionLifecycle,
        on_credentials: CredentialsCallback,
        on_transition: TransitionCallback,
        has_credentials: bool = False,
    ):
        self.session_id = session_id
        self.client = client
        self.lifecycle = lifecycle
        self.state = lifecycle.initial_state(has_credentials)
        self.pairing_artifact: Optional[str] = None
        self.disconnect_requested = False
        self.created_at = datetime.now()
        self._on_credentials = on_credentials
        self._on_transition = on_transition
        self._pump: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self.state is SessionState.OPEN

    def start(self) -> None:
        """Start consuming protocol events."""
        if self._pump is None:
            self._pump = asyncio.create_task(
                self._run_events(), name=f"session-events-{self.session_id}"
            )

    async def _run_events(self) -> None:
        try:
            async for event in self.client.events():
                if isinstance(event, CredentialsUpdate):
                    await self._save_credentials(event.creds)
                elif isinstance(event, ConnectionUpdate):
                    await self.handle_update(event)
                    if self.state.is_closed:
                        break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Event stream for session '{self.session_id}' failed: {e}")
            if not self.state.is_closed:
                await self.handle_update(
                    ConnectionUpdate(
                        connection=ConnectionStatus.CLOSE,
                        status_code=int(DisconnectReason.CONNECTION_LOST),
                        error=str(e),
                    )
                )

    async def _save_credentials(self, creds: dict[str, Any]) -> None:
        try:
            await self._on_credentials(creds)
        except Exception as e:
            logger.error(f"Failed to persist credentials for '{self.session_id}': {e}")

    async def handle_update(self, update: ConnectionUpdate) -> Transition:
        """Run one connection update through the state machine."""
        previous = self.state
        transition = self.lifecycle.apply(previous, update)
        self.state = transition.state

        if Effect.STORE_PAIRING in transition.effects:
            try:
                self.pairing_artifact = await render_pairing_artifact(update.qr)
                logger.info(f"Pairing code generated for session '{self.session_id}'")
            except Exception as e:
                logger.error(
                    f"Could not render pairing code for '{self.session_id}': {e}"
                )
        if Effect.CLEAR_PAIRING in transition.effects:
            self.pairing_artifact = None

        if self.state is not previous:
            if self.state is SessionState.OPEN:
                logger.info(f"Session '{self.session_id}' connected")
            elif self.state.is_closed:
                logger.info(
                    f"Session '{self.session_id}' closed "
                    f"(code {transition.status_code}, {self.state.value})"
                )
            else:
                logger.debug(
                    f"Session '{self.session_id}': {previous.value} -> {self.state.value}"
                )

        if any(effect not in _SESSION_LOCAL_EFFECTS for effect in transition.effects):
            await self._on_transition(self, transition)

        return transition

    async def stop_events(self) -> None:
        """Stop the event pump (no-op when called from the pump itself)."""
        pump = self._pump
        if pump is None or pump.done() or pump is asyncio.current_task():
            return
        pump.cancel()
        try:
            await pump
        except asyncio.CancelledError:
            pass

    async def close(self) -> None:
        """Stop consuming events and close the transport."""
        await self.stop_events()
        await self.client.close()

    def to_dict(self) -> dict[str, Any]:
        """Serialize session info for API responses."""
        return {
            "sessionId": self.session_id,
            "state": self.state.value,
            "connected": self.connected,
            "qr": self.pairing_artifact,
            "created_at": self.created_at.isoformat(),
        }
