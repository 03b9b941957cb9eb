"""
Starlette-based web server for wagate.

This server provides a REST API with the following endpoints:
- /start/{session_id}: Start a protocol session (or reuse the running one)
- /qrcode/{session_id}: Pairing code for a session waiting to be paired
- /send-message/{session_id}: Send a text message through a session
- /status/{session_id}: Connection state of a session
- /disconnect/{session_id}: Log out and close a session
- /disconnect-all: Log out and close every session
- /sessions: List registered sessions
- /health: Liveness probe

The session registry is created at startup, stored on ``app.state.registry``
and shut down when the application stops.
"""

import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Route

from wagate.config import CONFIG, Config
from wagate.logger import get_logger, setup_logging
from wagate.middleware import (
    APIKeyAuthMiddleware,
    OriginAllowListMiddleware,
    RequestLoggingMiddleware,
)
from wagate.protocol.bridge import BridgeProtocolClient
from wagate.protocol.credentials import FileCredentialStore
from wagate.routes.health_routes import health_check
from wagate.routes.session_routes import (
    disconnect_all,
    disconnect_session,
    get_qrcode,
    get_status,
    list_sessions,
    send_message,
    start_session,
)
from wagate.session.lifecycle import ReconnectPolicy
from wagate.session.registry import SessionRegistry

logger = get_logger(__name__)


def build_registry(config: Config) -> SessionRegistry:
    """Wire the registry to the bridge client and the credential store."""

    def client_factory(session_id: str, creds: dict) -> BridgeProtocolClient:
        return BridgeProtocolClient(session_id, creds, bridge_url=config.bridge_url)

    policy = ReconnectPolicy(
        base_delay=config.reconnect_base_delay,
        max_delay=config.reconnect_max_delay,
        max_attempts=config.reconnect_max_attempts,
    )
    return SessionRegistry(
        client_factory=client_factory,
        credential_store=FileCredentialStore(config.auth_dir),
        policy=policy,
    )


def create_app(
    config: Config = CONFIG, registry: Optional[SessionRegistry] = None
) -> Starlette:
    """
    Build the Starlette application.

    Args:
        config: Settings for the boundary middleware and the registry.
        registry: Pre-built registry (tests); built from config when omitted.
    """

    @asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info("Application startup - initializing session registry")
        app.state.registry = (
            registry if registry is not None else build_registry(config)
        )
        try:
            yield
        finally:
            logger.info("Application shutdown - closing sessions")
            await app.state.registry.shutdown()

    middleware = [
        Middleware(RequestLoggingMiddleware),
        Middleware(
            CORSMiddleware,
            allow_origins=config.allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        ),
        Middleware(OriginAllowListMiddleware, allowed_origins=config.allowed_origins),
    ]
    if config.api_keys:
        middleware.append(Middleware(APIKeyAuthMiddleware, api_keys=config.api_keys))

    return Starlette(
        routes=[
            Route("/start/{session_id}", start_session, methods=["GET"]),
            Route("/qrcode/{session_id}", get_qrcode, methods=["GET"]),
            Route("/send-message/{session_id}", send_message, methods=["POST"]),
            Route("/status/{session_id}", get_status, methods=["GET"]),
            Route("/disconnect/{session_id}", disconnect_session, methods=["POST"]),
            Route("/disconnect-all", disconnect_all, methods=["POST"]),
            Route("/sessions", list_sessions, methods=["GET"]),
            Route("/health", health_check, methods=["GET"]),
        ],
        middleware=middleware,
        lifespan=lifespan,
    )


def main():
    """Run the server with uvicorn."""
    import uvicorn

    if "--debug" in sys.argv:
        os.environ["LOG_LEVEL"] = "DEBUG"
        CONFIG.reload()

    setup_logging(level=CONFIG.log_level, log_file=CONFIG.log_file)

    logger.info(f"Starting wagate server on http://{CONFIG.host}:{CONFIG.port}")
    uvicorn.run(
        create_app(CONFIG),
        host=CONFIG.host,
        port=CONFIG.port,
        log_level=CONFIG.log_level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
