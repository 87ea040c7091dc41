"""WebSocket handling for pushing dashboard snapshots to renderers."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)


class ClientRegistry:
    """Track connected renderer sockets per dashboard channel."""

    def __init__(self) -> None:
        self._channels: dict[str, list[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, channel: str, websocket: WebSocket) -> None:
        """Accept and register a new connection."""
        await websocket.accept()
        async with self._lock:
            self._channels.setdefault(channel, []).append(websocket)
        logger.info(
            "Renderer connected to %s. Connections: %d",
            channel,
            self.connection_count(channel),
        )

    async def disconnect(self, channel: str, websocket: WebSocket) -> None:
        """Remove a connection."""
        async with self._lock:
            sockets = self._channels.get(channel, [])
            if websocket in sockets:
                sockets.remove(websocket)
        logger.info(
            "Renderer disconnected from %s. Connections: %d",
            channel,
            self.connection_count(channel),
        )

    async def broadcast(self, channel: str, message: dict[str, Any]) -> None:
        """Send a message to every renderer on ``channel``."""
        if not self._channels.get(channel):
            return

        data = json.dumps(message, default=str)
        disconnected: list[WebSocket] = []

        async with self._lock:
            sockets = self._channels.get(channel, [])
            for connection in sockets:
                try:
                    await connection.send_text(data)
                except Exception as e:
                    logger.warning("Failed to send to renderer on %s: %s", channel, e)
                    disconnected.append(connection)

            for conn in disconnected:
                if conn in sockets:
                    sockets.remove(conn)

    def connection_count(self, channel: str | None = None) -> int:
        """Active connections on ``channel``, or on all channels."""
        if channel is not None:
            return len(self._channels.get(channel, []))
        return sum(len(sockets) for sockets in self._channels.values())


async def websocket_endpoint(
    websocket: WebSocket,
    channel: str,
    clients: ClientRegistry,
    on_connect: Callable[[], Any] | None = None,
    keepalive_timeout: float = 30.0,
) -> None:
    """Serve one renderer connection until it goes away.

    Args:
        websocket: The WebSocket connection
        channel: Dashboard name the renderer follows
        clients: Registry the connection joins
        on_connect: Optional callback returning the initial message
        keepalive_timeout: Seconds of silence before a keepalive ping
    """
    await clients.connect(channel, websocket)

    try:
        if on_connect is not None:
            initial = on_connect()
            if initial:
                await websocket.send_text(json.dumps(initial, default=str))

        while True:
            try:
                data = await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=keepalive_timeout,
                )
                if data == "ping":
                    await websocket.send_text("pong")
                else:
                    logger.debug("Received renderer message on %s: %s", channel, data[:100])
            except asyncio.TimeoutError:
                try:
                    await websocket.send_text("ping")
                except Exception:
                    break

    except WebSocketDisconnect:
        logger.info("Renderer disconnected normally from %s", channel)
    except Exception as e:
        logger.warning("Renderer WebSocket error on %s: %s", channel, e)
    finally:
        await clients.disconnect(channel, websocket)


