# src/wagate/config.py

import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

PROJECT_DIR = Path(os.getenv("WAGATE_PROJECT_DIR", Path.cwd()))

DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:8080",
    "http://localhost:3000",
    "https://dev.senhadigitalplus.com.br",
    "https://app.senhadigitalplus.com.br",
    "https://dev.sdcrm.com.br",
    "https://app.sdcrm.com.br",
]


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    # Server
    TITLE = "wagate"
    HOST = "0.0.0.0"
    PORT = 3333

    # Boundary
    ALLOWED_ORIGINS: List[str] = list(DEFAULT_ALLOWED_ORIGINS)
    API_KEYS: List[str] = []

    # Protocol bridge and credentials
    BRIDGE_URL = "ws://localhost:8765/session"
    AUTH_DIR = "auth_info"

    # Reconnect policy
    RECONNECT_BASE_DELAY = 1.0
    RECONNECT_MAX_DELAY = 60.0
    RECONNECT_MAX_ATTEMPTS = 10

    # Logging
    LOG_LEVEL = "INFO"
    LOG_FILE = None

    def __init__(self):
        self.reload()

    def reload(self):
        """Re-read settings from the environment (and .env in PROJECT_DIR)."""
        load_dotenv(PROJECT_DIR / ".env")

        self.host = os.getenv("WAGATE_HOST", self.HOST)
        self.port = int(os.getenv("WAGATE_PORT", os.getenv("PORT", self.PORT)))

        origins = os.getenv("WAGATE_ALLOWED_ORIGINS")
        self.allowed_origins = (
            _split_list(origins) if origins else list(self.ALLOWED_ORIGINS)
        )
        self.api_keys = _split_list(os.getenv("WAGATE_API_KEYS", ""))

        self.bridge_url = os.getenv("WAGATE_BRIDGE_URL", self.BRIDGE_URL)
        auth_dir = Path(os.getenv("WAGATE_AUTH_DIR", self.AUTH_DIR))
        self.auth_dir = auth_dir if auth_dir.is_absolute() else PROJECT_DIR / auth_dir

        self.reconnect_base_delay = float(
            os.getenv("WAGATE_RECONNECT_BASE_DELAY", self.RECONNECT_BASE_DELAY)
        )
        self.reconnect_max_delay = float(
            os.getenv("WAGATE_RECONNECT_MAX_DELAY", self.RECONNECT_MAX_DELAY)
        )
        self.reconnect_max_attempts = int(
            os.getenv("WAGATE_RECONNECT_MAX_ATTEMPTS", self.RECONNECT_MAX_ATTEMPTS)
        )

        self.log_level = os.getenv("LOG_LEVEL", self.LOG_LEVEL)
        self.log_file = os.getenv("LOG_FILE", self.LOG_FILE)


CONFIG = Config()
