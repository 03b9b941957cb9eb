"""
Boundary middleware for wagate.

Provides the origin allow-list, optional API key authentication and request
logging.
"""
import hashlib
import secrets
import time
from typing import Callable, Iterable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from wagate.logger import get_logger

logger = get_logger(__name__)


class OriginAllowListMiddleware(BaseHTTPMiddleware):
    """
    Reject cross-origin requests from origins that are not allow-listed.

    CORSMiddleware only withholds the CORS headers for unknown origins; this
    middleware refuses the request outright with 403. Requests without an
    Origin header (curl, server-to-server) pass through.
    """

    def __init__(self, app, allowed_origins: Iterable[str]):
        super().__init__(app)
        self.allowed_origins = set(allowed_origins)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        origin = request.headers.get("Origin")
        if origin and origin not in self.allowed_origins:
            logger.warning(f"Rejected request from origin {origin} to {request.url.path}")
            return JSONResponse(
                {"error": "Origin not allowed by CORS policy"},
                status_code=403,
            )
        return await call_next(request)


class APIKeyAuthMiddleware(BaseHTTPMiddleware):
    """
    API key authentication middleware.

    Checks for API key in:
    1. Authorization header: "Bearer <key>"
    2. X-API-Key header: "<key>"

    Configuration via environment:
        WAGATE_API_KEYS=key1,key2,key3
    """

    def __init__(self, app, api_keys: Optional[list] = None,
                 public_paths: Optional[list] = None):
        super().__init__(app)
        self.public_paths = set(public_paths or ["/health"])

        # Hash API keys for constant-time comparison
        self.api_key_hashes = [
            hashlib.sha256(key.encode()).hexdigest()
            for key in (api_keys or [])
        ]

    def _extract_api_key(self, request: Request) -> Optional[str]:
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer "):
            return auth[7:]
        return request.headers.get("X-API-Key")

    def _verify_api_key(self, api_key: str) -> bool:
        if not self.api_key_hashes:
            # No keys configured - allow all
            return True

        key_hash = hashlib.sha256(api_key.encode()).hexdigest()
        return any(
            secrets.compare_digest(key_hash, known) for known in self.api_key_hashes
        )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.public_paths or request.method == "OPTIONS":
            return await call_next(request)

        api_key = self._extract_api_key(request)
        if not api_key:
            logger.warning(f"Missing API key for {request.url.path}")
            return JSONResponse(
                {
                    "error": "Authentication required",
                    "message": "API key required in Authorization header or X-API-Key header"
                },
                status_code=401
            )

        if not self._verify_api_key(api_key):
            logger.warning(f"Invalid API key for {request.url.path}")
            return JSONResponse({"error": "Invalid API key"}, status_code=403)

        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log all requests with timing information.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"Request failed: {request.method} {request.url.path}: {e}")
            raise

        duration = time.time() - start_time
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"in {duration*1000:.2f}ms"
        )
        response.headers["X-Response-Time"] = f"{duration*1000:.2f}ms"
        return response
