"""
Health check endpoint.
"""
import time
from datetime import datetime

from starlette.requests import Request
from starlette.responses import JSONResponse

start_time = time.time()


async def health_check(request: Request) -> JSONResponse:
    """
    Basic health check endpoint.

    Returns 200 if service is running, with session counts when the
    registry is up.
    """
    registry = getattr(request.app.state, "registry", None)
    sessions = (
        {"total": len(registry), "connected": registry.connected_count}
        if registry is not None
        else None
    )

    return JSONResponse({
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "uptime_seconds": int(time.time() - start_time),
        "sessions": sessions,
    })
