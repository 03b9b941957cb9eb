"""
Routes for session management.

Provides:
- GET  /start/{session_id}         start (or reuse) a session
- GET  /qrcode/{session_id}        current pairing code as a data URL
- POST /send-message/{session_id}  send a text message
- GET  /status/{session_id}        connection state and pending pairing code
- POST /disconnect/{session_id}    log out and close one session
- POST /disconnect-all             log out and close every session
- GET  /sessions                   list registered sessions
"""

import json

from starlette.requests import Request
from starlette.responses import JSONResponse

from wagate.errors import ConnectionFailure, SessionNotConnected, ValidationError
from wagate.logger import get_logger
from wagate.validation import validate_send_payload

logger = get_logger(__name__)


def _get_registry(request: Request):
    """Get SessionRegistry from app state."""
    return getattr(request.app.state, "registry", None)


def _not_initialized() -> JSONResponse:
    return JSONResponse({"error": "Session registry not initialized"}, status_code=503)


async def start_session(request: Request) -> JSONResponse:
    """GET /start/{session_id}: Start a session or return the running one."""
    registry = _get_registry(request)
    if registry is None:
        return _not_initialized()

    session_id = request.path_params["session_id"]
    try:
        await registry.start_session(session_id)
        return JSONResponse({"session": session_id})
    except ValidationError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    except Exception as e:
        logger.error(f"Error starting session '{session_id}': {e}")
        return JSONResponse({"error": str(e)}, status_code=500)


async def get_qrcode(request: Request) -> JSONResponse:
    """GET /qrcode/{session_id}: Pairing code waiting to be scanned."""
    registry = _get_registry(request)
    if registry is None:
        return _not_initialized()

    session = registry.get_session(request.path_params["session_id"])
    if not session or not session.pairing_artifact:
        return JSONResponse(
            {"error": "QR code not generated yet or session already connected"},
            status_code=400,
        )

    return JSONResponse({"qr": session.pairing_artifact})


async def send_message(request: Request) -> JSONResponse:
    """
    POST /send-message/{session_id}: Send a text message.

    Body:
        {"number": "11987654321", "message": "hello"}
    """
    registry = _get_registry(request)
    if registry is None:
        return _not_initialized()

    session_id = request.path_params["session_id"]
    try:
        try:
            data = await request.json()
        except json.JSONDecodeError:
            data = None
        number, message = validate_send_payload(data)

        await registry.send_message(session_id, number, message)
        return JSONResponse(
            {"message": f"Message sent to {number} via session {session_id}"}
        )
    except (ValidationError, SessionNotConnected) as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    except ConnectionFailure as e:
        logger.error(f"Send via session '{session_id}' failed: {e}")
        return JSONResponse({"error": str(e)}, status_code=500)
    except Exception as e:
        logger.error(f"Unexpected error sending via session '{session_id}': {e}")
        return JSONResponse({"error": str(e)}, status_code=500)


async def get_status(request: Request) -> JSONResponse:
    """GET /status/{session_id}: Connection state of a session."""
    registry = _get_registry(request)
    if registry is None:
        return _not_initialized()

    session_id = request.path_params["session_id"]
    session = registry.get_session(session_id)
    if not session:
        return JSONResponse(
            {
                "connected": False,
                "error": "Session not started or disconnected",
                "reconnecting": registry.reconnect_pending(session_id),
            },
            status_code=404,
        )

    return JSONResponse(
        {
            "connected": session.connected,
            "qr": session.pairing_artifact,
            "sessionId": session_id,
            "state": session.state.value,
        }
    )


async def disconnect_session(request: Request) -> JSONResponse:
    """POST /disconnect/{session_id}: Log out and close one session."""
    registry = _get_registry(request)
    if registry is None:
        return _not_initialized()

    session_id = request.path_params["session_id"]
    try:
        await registry.disconnect_session(session_id)
        return JSONResponse({"message": f"Session {session_id} disconnected"})
    except ValidationError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    except Exception as e:
        logger.error(f"Error disconnecting session '{session_id}': {e}")
        return JSONResponse({"error": str(e)}, status_code=500)


async def disconnect_all(request: Request) -> JSONResponse:
    """POST /disconnect-all: Log out and close every session."""
    registry = _get_registry(request)
    if registry is None:
        return _not_initialized()

    try:
        await registry.disconnect_all()
        return JSONResponse({"message": "All sessions were disconnected"})
    except Exception as e:
        logger.error(f"Error disconnecting all sessions: {e}")
        return JSONResponse(
            {"error": "Failed to disconnect all sessions", "details": str(e)},
            status_code=500,
        )


async def list_sessions(request: Request) -> JSONResponse:
    """GET /sessions: List registered sessions."""
    registry = _get_registry(request)
    if registry is None:
        return JSONResponse({"sessions": [], "error": "Session registry not initialized"})

    sessions = registry.list_sessions()
    return JSONResponse({"sessions": sessions, "count": len(sessions)})
