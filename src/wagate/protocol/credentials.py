"""
Key-scoped credential persistence.

Each session keeps its credential material in ``<auth_dir>/<session_id>/creds.json``.
The file is loaded when the session starts and overwritten on every
credential update from the protocol.
"""

import asyncio
import json
import os
import shutil
from pathlib import Path
from typing import Any

from wagate.logger import get_logger
from wagate.validation import validate_session_id

logger = get_logger(__name__)

CREDS_FILENAME = "creds.json"


class FileCredentialStore:
    """Stores one JSON credential document per session key."""

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)

    def session_dir(self, session_id: str) -> Path:
        return self.base_dir / validate_session_id(session_id)

    def exists(self, session_id: str) -> bool:
        return (self.session_dir(session_id) / CREDS_FILENAME).exists()

    def _load(self, session_id: str) -> dict[str, Any]:
        path = self.session_dir(session_id) / CREDS_FILENAME
        if not path.exists():
            return {}
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.warning(f"Corrupt credentials for session '{session_id}', ignoring: {e}")
            return {}

    def _save(self, session_id: str, creds: dict[str, Any]) -> None:
        directory = self.session_dir(session_id)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / CREDS_FILENAME
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(creds), encoding="utf-8")
        os.replace(tmp, path)

    def _clear(self, session_id: str) -> None:
        directory = self.session_dir(session_id)
        if directory.exists():
            shutil.rmtree(directory)

    async def load(self, session_id: str) -> dict[str, Any]:
        """Return stored credentials, or an empty dict for a new session."""
        return await asyncio.to_thread(self._load, session_id)

    async def save(self, session_id: str, creds: dict[str, Any]) -> None:
        """Overwrite the stored credentials for a session."""
        await asyncio.to_thread(self._save, session_id, creds)
        logger.debug(f"Saved credentials for session '{session_id}'")

    async def clear(self, session_id: str) -> None:
        """Delete everything stored for a session."""
        await asyncio.to_thread(self._clear, session_id)
        logger.info(f"Cleared credentials for session '{session_id}'")
