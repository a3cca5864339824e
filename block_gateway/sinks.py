import asyncio
from typing import Optional, Protocol

from fastapi import WebSocket
from loguru import logger
from starlette.websockets import WebSocketDisconnect, WebSocketState

from block_gateway.errors import SinkClosedError


class Sink(Protocol):
    """Write side of a subscriber connection."""

    async def send(self, text: str) -> None: ...

    async def close(self) -> None: ...


class WebSocketSink:
    """Writes events straight to an accepted websocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket

    async def send(self, text: str) -> None:
        if self.websocket.application_state != WebSocketState.CONNECTED:
            raise SinkClosedError("WebSocket is closed")
        try:
            await self.websocket.send_text(text)
        except (WebSocketDisconnect, RuntimeError, ConnectionError) as exc:
            raise SinkClosedError(f"WebSocket write failed: {exc}") from exc

    async def close(self) -> None:
        if self.websocket.application_state == WebSocketState.CONNECTED:
            await self.websocket.close()


class QueueSink:
    """
    Buffers events for a streaming HTTP response (SSE and MCP-SSE).

    The response generator drains ``queue``; ``None`` marks the end of the
    stream. A slow reader never blocks the broadcaster: once the buffer is
    full the oldest pending event is dropped.
    """

    def __init__(self, maxsize: int = 100) -> None:
        self.queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    async def send(self, text: str) -> None:
        if self.closed:
            raise SinkClosedError("Stream is closed")
        try:
            self.queue.put_nowait(text)
        except asyncio.QueueFull:
            self.queue.get_nowait()
            self.queue.put_nowait(text)
            logger.warning("Stream buffer full, dropped oldest event")

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            self.queue.get_nowait()
            self.queue.put_nowait(None)
