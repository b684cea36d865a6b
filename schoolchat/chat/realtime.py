"""
Realtime chat channel.

Best-effort websocket subscription to threads. The session keeps working
without it: sending and already-fetched history never depend on this channel.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Literal, Protocol

import websockets
from pydantic import BaseModel, ConfigDict, ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from schoolchat.config import settings
from schoolchat.infrastructure.observability.logging import get_logger
from schoolchat.models.api.school_payloads import MessageSender

logger = get_logger(__name__)

FrameType = Literal["subscribe_thread", "send_message", "message_received", "thread_updated"]


class RealtimeFrame(BaseModel):
    """One JSON frame on the chat websocket."""

    model_config = ConfigDict(extra="ignore")

    type: FrameType
    thread_id: str | None = None
    message_id: str | None = None
    content: str | None = None
    message_type: Literal["text"] | None = None
    sender_id: str | None = None
    sender: MessageSender | None = None
    created_at: datetime | None = None


FrameHandler = Callable[[RealtimeFrame], Awaitable[None] | None]
Connector = Callable[[str], Awaitable[Any]]


class RealtimeChannel(Protocol):
    async def connect(self) -> None: ...

    async def subscribe_to_thread(self, thread_id: str) -> None: ...

    def on_message(self, callback: FrameHandler) -> None: ...

    async def disconnect(self) -> None: ...

    def is_connected(self) -> bool: ...


class RealtimeError(Exception):
    """Raised when the realtime channel cannot be opened."""


class ChatWebSocket:
    """
    Websocket client for thread subscriptions.

    Reconnects up to `max_reconnects` times with a linearly growing delay and
    re-subscribes to every thread it was subscribed to.
    """

    def __init__(
        self,
        token: str,
        url: str | None = None,
        max_reconnects: int | None = None,
        reconnect_delay: float | None = None,
        connect_timeout: float | None = None,
        connector: Connector | None = None,
    ):
        self._token = token
        self._url = url or settings.websocket_url()
        self.max_reconnects = (
            max_reconnects if max_reconnects is not None else settings.REALTIME_MAX_RECONNECTS
        )
        self.reconnect_delay = (
            reconnect_delay if reconnect_delay is not None else settings.REALTIME_RECONNECT_DELAY
        )
        self.connect_timeout = (
            connect_timeout if connect_timeout is not None else settings.REALTIME_CONNECT_TIMEOUT
        )
        self._connector = connector or websockets.connect
        self._ws = None
        self._reader_task: asyncio.Task | None = None
        self._callback: FrameHandler | None = None
        self._subscriptions: set[str] = set()
        self._connected = False
        self._closing = False
        self.reconnect_attempts = 0

    def _connection_url(self) -> str:
        separator = "&" if "?" in self._url else "?"
        return f"{self._url}{separator}token={self._token}"

    async def connect(self) -> None:
        """
        Open the websocket and start reading frames.

        Raises:
            RealtimeError: if the connection cannot be established in time
        """
        self._closing = False
        try:
            self._ws = await asyncio.wait_for(
                self._connector(self._connection_url()), timeout=self.connect_timeout
            )
        except (TimeoutError, OSError, WebSocketException) as e:
            logger.error("WebSocket connection failed", error=str(e))
            raise RealtimeError(f"WebSocket connection failed: {e}") from e

        self._connected = True
        self.reconnect_attempts = 0
        logger.info("WebSocket connected")

        for thread_id in sorted(self._subscriptions):
            await self._send({"type": "subscribe_thread", "thread_id": thread_id})

        self._reader_task = asyncio.create_task(self._read_loop())

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                await self._dispatch(raw)
        except ConnectionClosed as e:
            logger.info("WebSocket closed", code=getattr(e, "code", None))
        finally:
            self._connected = False

        if not self._closing:
            await self._reconnect()

    async def _reconnect(self) -> None:
        while not self._closing and self.reconnect_attempts < self.max_reconnects:
            self.reconnect_attempts += 1
            delay = self.reconnect_delay * self.reconnect_attempts
            logger.info(
                "Attempting to reconnect",
                attempt=self.reconnect_attempts,
                max_attempts=self.max_reconnects,
                delay_seconds=delay,
            )
            await asyncio.sleep(delay)
            if self._closing:
                return
            try:
                await self.connect()
                return
            except RealtimeError:
                continue
        if not self._closing:
            logger.warning("WebSocket reconnect attempts exhausted", attempts=self.reconnect_attempts)

    async def _dispatch(self, raw: str | bytes) -> None:
        try:
            frame = RealtimeFrame.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.error("Error parsing WebSocket message", error=str(e))
            return

        if self._callback is None:
            return
        try:
            result = self._callback(frame)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            # A failing handler must not stop the reader
            logger.error(
                "WebSocket frame handler failed",
                frame_type=frame.type,
                thread_id=frame.thread_id,
                error=str(e),
            )

    async def _send(self, payload: dict[str, Any]) -> None:
        if not self.is_connected():
            return
        try:
            await self._ws.send(json.dumps(payload))
        except (ConnectionClosed, OSError) as e:
            logger.warning("WebSocket send failed", error=str(e), frame_type=payload.get("type"))

    async def subscribe_to_thread(self, thread_id: str) -> None:
        self._subscriptions.add(thread_id)
        await self._send({"type": "subscribe_thread", "thread_id": thread_id})

    def on_message(self, callback: FrameHandler) -> None:
        self._callback = callback

    async def disconnect(self) -> None:
        self._closing = True
        self._connected = False
        if self._ws is not None:
            try:
                await self._ws.close()
            except (ConnectionClosed, OSError) as e:
                logger.debug("WebSocket close failed", error=str(e))
            self._ws = None
        if self._reader_task is not None and self._reader_task is not asyncio.current_task():
            self._reader_task.cancel()
            self._reader_task = None

    def is_connected(self) -> bool:
        return self._connected and self._ws is not None
