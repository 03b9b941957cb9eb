"""
WebSocket protocol client.

Talks to a protocol bridge process (the sidecar that runs the real chat
library) over one WebSocket per session. Requests carry a ``request_id`` and
are answered by ``result`` messages; everything else the bridge pushes is
turned into protocol events and queued in arrival order.
"""

import asyncio
import json
import uuid
from typing import Any, AsyncIterator, Optional

import websockets
from pydantic import ValidationError

from wagate.errors import ConnectionFailure
from wagate.logger import get_logger
from wagate.protocol.base import (
    ConnectionStatus,
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
    ProtocolClient,
    ProtocolEvent,
)
from wagate.protocol.models import (
    ConnectionUpdateMessage,
    ConnectMessage,
    CredsUpdateMessage,
    ErrorMessage,
    LogoutMessage,
    ResultMessage,
    SendMessage,
)

logger = get_logger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0
OPEN_TIMEOUT = 10.0


class BridgeProtocolClient(ProtocolClient):
    """
    Protocol client backed by a bridge WebSocket.

    Args:
        session_id: Session key, sent to the bridge on connect.
        creds: Stored credential material (empty for a new pairing).
        bridge_url: WebSocket URL of the bridge.
        request_timeout: Seconds to wait for a ``result`` reply.
    """

    def __init__(
        self,
        session_id: str,
        creds: Optional[dict[str, Any]] = None,
        bridge_url: str = "ws://localhost:8765/session",
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        super().__init__(session_id, creds)
        self.bridge_url = bridge_url
        self.request_timeout = request_timeout
        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pending: dict[str, asyncio.Future] = {}
        self._closed = False
        self._saw_close = False

    async def connect(self) -> None:
        logger.info(f"Connecting session '{self.session_id}' to {self.bridge_url}")
        try:
            self._ws = await websockets.connect(
                self.bridge_url, open_timeout=OPEN_TIMEOUT
            )
            hello = ConnectMessage(session_id=self.session_id, creds=self.creds)
            await self._ws.send(hello.model_dump_json())
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            await self.close()
            raise ConnectionFailure(
                f"Could not connect session '{self.session_id}' to bridge: {e}"
            ) from e

        self._reader = asyncio.create_task(self._read_loop())

    async def _read_loop(self) -> None:
        """Pump bridge messages into the event queue until the socket ends."""
        try:
            async for raw in self._ws:
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(
                        f"Non-JSON message from bridge for session '{self.session_id}'"
                    )
                    continue
                if not isinstance(data, dict):
                    logger.warning(
                        f"Non-object message from bridge for session '{self.session_id}'"
                    )
                    continue
                self._dispatch(data)
        except websockets.exceptions.ConnectionClosed as e:
            logger.debug(f"Bridge socket for '{self.session_id}' closed: {e}")
        finally:
            self._fail_pending("Bridge connection closed")
            if not self._saw_close and not self._closed:
                # Socket dropped without the bridge reporting why
                self._queue.put_nowait(
                    ConnectionUpdate(
                        connection=ConnectionStatus.CLOSE,
                        status_code=int(DisconnectReason.CONNECTION_LOST),
                        error="bridge connection lost",
                    )
                )
            self._queue.put_nowait(None)

    def _dispatch(self, data: dict[str, Any]) -> None:
        msg_type = data.get("type")

        try:
            if msg_type == "connection.update":
                msg = ConnectionUpdateMessage(**data)
                connection = (
                    ConnectionStatus(msg.connection) if msg.connection else None
                )
                if connection is ConnectionStatus.CLOSE:
                    self._saw_close = True
                self._queue.put_nowait(
                    ConnectionUpdate(
                        connection=connection,
                        qr=msg.qr,
                        status_code=msg.status_code,
                        error=msg.error,
                    )
                )

            elif msg_type == "creds.update":
                msg = CredsUpdateMessage(**data)
                self.creds = msg.creds
                self._queue.put_nowait(CredentialsUpdate(creds=msg.creds))

            elif msg_type == "result":
                msg = ResultMessage(**data)
                future = self._pending.get(msg.request_id)
                if future and not future.done():
                    future.set_result(msg)
                elif not future:
                    logger.warning(
                        f"Result for unknown request_id {msg.request_id} "
                        f"on session '{self.session_id}'"
                    )

            elif msg_type == "error":
                msg = ErrorMessage(**data)
                logger.error(f"Bridge error on session '{self.session_id}': {msg.message}")

            else:
                logger.debug(f"Unhandled bridge message type: {msg_type}")

        except (ValidationError, ValueError) as e:
            logger.warning(
                f"Malformed '{msg_type}' message on session '{self.session_id}': {e}"
            )

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionFailure(reason))

    async def _request(self, message) -> ResultMessage:
        if self._ws is None or self._closed:
            raise ConnectionFailure(f"Session '{self.session_id}' transport is closed")

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[message.request_id] = future
        try:
            await self._ws.send(message.model_dump_json())
            result = await asyncio.wait_for(future, timeout=self.request_timeout)
        except asyncio.TimeoutError:
            raise ConnectionFailure(
                f"Bridge did not answer '{message.type}' for session "
                f"'{self.session_id}' within {self.request_timeout}s"
            ) from None
        except websockets.exceptions.ConnectionClosed as e:
            raise ConnectionFailure(
                f"Bridge connection closed during '{message.type}': {e}"
            ) from e
        finally:
            self._pending.pop(message.request_id, None)

        if not result.success:
            raise ConnectionFailure(result.error or f"'{message.type}' failed")
        return result

    async def events(self) -> AsyncIterator[ProtocolEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def send_text(self, jid: str, text: str) -> None:
        await self._request(
            SendMessage(request_id=str(uuid.uuid4()), jid=jid, text=text)
        )

    async def logout(self) -> None:
        await self._request(LogoutMessage(request_id=str(uuid.uuid4())))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                logger.debug(f"Error closing bridge socket for '{self.session_id}': {e}")

        if self._reader is not None:
            try:
                await asyncio.wait_for(self._reader, timeout=OPEN_TIMEOUT)
            except asyncio.TimeoutError:
                self._reader.cancel()
            except Exception as e:
                logger.warning(f"Bridge reader for '{self.session_id}' failed: {e}")
        else:
            self._queue.put_nowait(None)
