"""
Session lifecycle state machine.

Maps connection updates from the protocol client onto session states and
the side effects the registry has to carry out:

- a pairing code arrives before the session is open -> store it
- the connection opens -> clear the pairing code, reset reconnect backoff
- the connection closes as logged out -> drop the session for good
- the connection closes for any other reason -> drop it and reconnect

Reconnects are bounded by a ReconnectPolicy (exponential backoff plus a cap
on consecutive attempts) so a flapping network cannot cause a reconnect storm.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional, Tuple

from wagate.protocol.base import ConnectionStatus, ConnectionUpdate, DisconnectReason


class SessionState(str, Enum):
    PAIRING = "pairing"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED_RECOVERABLE = "closed_recoverable"
    CLOSED_TERMINAL = "closed_terminal"

    @property
    def is_closed(self) -> bool:
        return self in (SessionState.CLOSED_RECOVERABLE, SessionState.CLOSED_TERMINAL)


class Effect(str, Enum):
    STORE_PAIRING = "store_pairing"
    CLEAR_PAIRING = "clear_pairing"
    RESET_BACKOFF = "reset_backoff"
    REMOVE = "remove"
    RECONNECT = "reconnect"
    FORGET_CREDENTIALS = "forget_credentials"


@dataclass(frozen=True)
class Transition:
    """Result of applying one connection update to a state."""

    state: SessionState
    effects: Tuple[Effect, ...] = ()
    status_code: Optional[int] = None


@dataclass
class ReconnectPolicy:
    """Configurable reconnect policy."""

    base_delay: float = 1.0  # seconds before the first retry
    max_delay: float = 60.0
    max_attempts: int = 10  # 0 = unlimited
    immediate_reasons: FrozenSet[int] = field(
        default_factory=lambda: frozenset({int(DisconnectReason.RESTART_REQUIRED)})
    )

    def is_immediate(self, status_code: Optional[int]) -> bool:
        return status_code in self.immediate_reasons

    def allows(self, attempt: int) -> bool:
        return not self.max_attempts or attempt <= self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Backoff delay before the given (1-based) attempt."""
        if attempt <= 0:
            return 0.0
        return min(self.max_delay, self.base_delay * (2 ** min(attempt - 1, 32)))


class SessionLifecycle:
    """Pure transition logic for a single session."""

    def __init__(self, policy: Optional[ReconnectPolicy] = None):
        self.policy = policy or ReconnectPolicy()

    @staticmethod
    def initial_state(has_credentials: bool) -> SessionState:
        """Sessions without stored credentials start out waiting to be paired."""
        return SessionState.CONNECTING if has_credentials else SessionState.PAIRING

    @staticmethod
    def is_logged_out(status_code: Optional[int]) -> bool:
        return status_code == DisconnectReason.LOGGED_OUT

    def apply(self, state: SessionState, update: ConnectionUpdate) -> Transition:
        """
        Apply a connection update.

        Returns:
            The new state plus the effects the registry must execute, in order.
        """
        if state.is_closed:
            return Transition(state)

        effects = []

        if update.qr and state is not SessionState.OPEN:
            effects.append(Effect.STORE_PAIRING)
            state = SessionState.PAIRING

        if update.connection is ConnectionStatus.CONNECTING:
            if state is not SessionState.PAIRING:
                state = SessionState.CONNECTING

        elif update.connection is ConnectionStatus.OPEN:
            effects.extend((Effect.CLEAR_PAIRING, Effect.RESET_BACKOFF))
            state = SessionState.OPEN

        elif update.connection is ConnectionStatus.CLOSE:
            if self.is_logged_out(update.status_code):
                effects.extend((Effect.REMOVE, Effect.FORGET_CREDENTIALS))
                state = SessionState.CLOSED_TERMINAL
            else:
                effects.extend((Effect.REMOVE, Effect.RECONNECT))
                state = SessionState.CLOSED_RECOVERABLE

        return Transition(state, tuple(effects), update.status_code)

    def reconnect_delay(self, status_code: Optional[int], attempt: int) -> Optional[float]:
        """
        Delay before reconnect attempt number ``attempt``.

        Returns:
            Seconds to wait, or None when the policy gives up.
        """
        if self.policy.is_immediate(status_code):
            return 0.0
        if not self.policy.allows(attempt):
            return None
        return self.policy.delay_for(attempt)
