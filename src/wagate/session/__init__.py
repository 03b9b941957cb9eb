"""
Session management for wagate.

- lifecycle: state machine and reconnect policy
- session: one managed protocol connection and its event pump
- registry: concurrent map of session key to Session
- pairing: pairing code rendering
"""

from wagate.session.lifecycle import (
    Effect,
    ReconnectPolicy,
    SessionLifecycle,
    SessionState,
    Transition,
)
from wagate.session.registry import SessionRegistry
from wagate.session.session import Session

__all__ = [
    "Effect",
    "ReconnectPolicy",
    "Session",
    "SessionLifecycle",
    "SessionRegistry",
    "SessionState",
    "Transition",
]
