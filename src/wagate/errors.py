"""
Error taxonomy for wagate.

Route handlers translate these into HTTP status codes; everything else that
escapes a handler becomes a 500.
"""


class WagateError(Exception):
    """Base class for all application errors."""

    status_code = 500


class ValidationError(WagateError):
    """Raised when request input fails validation."""

    status_code = 400


class InvalidNumberFormat(ValidationError):
    """Raised when a phone number cannot be normalized."""


class SessionNotConnected(WagateError):
    """Raised when an operation needs a session that is not registered."""

    status_code = 400

    def __init__(self, session_id: str):
        super().__init__(f"Session '{session_id}' is not connected")
        self.session_id = session_id


class ConnectionFailure(WagateError):
    """Raised when the protocol client fails to connect, send or log out."""

    status_code = 500
