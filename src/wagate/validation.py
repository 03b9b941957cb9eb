"""
Input validation utilities for wagate.

Session ids name a directory on disk, so they are restricted to a safe
character set before they reach the registry or the credential store.
"""

import re
from typing import Any, Tuple

from wagate.errors import ValidationError

_SESSION_ID = re.compile(r"[a-zA-Z0-9\-_]+")
MAX_SESSION_ID_LENGTH = 100


def validate_session_id(session_id: str) -> str:
    """
    Validate session ID format.

    Session IDs should be alphanumeric with hyphens and underscores.
    """
    if not session_id:
        raise ValidationError("Session ID cannot be empty")

    if not _SESSION_ID.fullmatch(session_id):
        raise ValidationError(
            "Session ID can only contain letters, numbers, hyphens, and underscores"
        )

    if len(session_id) > MAX_SESSION_ID_LENGTH:
        raise ValidationError(
            f"Session ID too long (max {MAX_SESSION_ID_LENGTH} characters)"
        )

    return session_id


def validate_send_payload(data: Any) -> Tuple[str, str]:
    """Extract ``number`` and ``message`` from a send-message body."""
    if not isinstance(data, dict):
        raise ValidationError("number and message are required")

    number = data.get("number")
    message = data.get("message")
    if not number or not message:
        raise ValidationError("number and message are required")

    return str(number), str(message)
