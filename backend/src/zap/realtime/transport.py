"""Connection addressing and fan-out for authenticated websockets."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable

from fastapi import status
from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState


logger = logging.getLogger(__name__)


def build_frame(event: str, data: Any) -> dict[str, Any]:
    return {"type": event, "data": data}


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Safely send JSON data through websocket, handling disconnections gracefully.

    Returns True if message was sent successfully, False otherwise.
    """
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


class ConnectionHub:
    """Address live connections by opaque id.

    Emitting to an unknown or closed connection is a silent no-op; callers are
    never told about dead sockets except through the return value.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, WebSocket] = {}

    def register(self, connection_id: str, websocket: WebSocket) -> None:
        self._connections[connection_id] = websocket

    def unregister(self, connection_id: str) -> bool:
        return self._connections.pop(connection_id, None) is not None

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def connection_ids(self) -> list[str]:
        return list(self._connections)

    async def emit(self, connection_id: str, event: str, data: Any) -> bool:
        websocket = self._connections.get(connection_id)
        if websocket is None:
            logger.debug("Dropping %s for unknown connection %s", event, connection_id)
            return False
        return await safe_send_json(websocket, build_frame(event, data))

    async def emit_many(
        self,
        connection_ids: Iterable[str],
        event: str,
        data: Any,
        *,
        exclude: Iterable[str] | None = None,
    ) -> int:
        exclude_set = set(exclude or [])
        delivered = 0
        # Snapshot first; membership may change while a send is suspended.
        for connection_id in list(connection_ids):
            if connection_id in exclude_set:
                continue
            if await self.emit(connection_id, event, data):
                delivered += 1
        return delivered

    async def emit_all(
        self, event: str, data: Any, *, exclude: Iterable[str] | None = None
    ) -> int:
        return await self.emit_many(self.connection_ids(), event, data, exclude=exclude)

    async def disconnect(
        self,
        connection_id: str,
        *,
        code: int = status.WS_1008_POLICY_VIOLATION,
        reason: str | None = None,
    ) -> None:
        websocket = self._connections.get(connection_id)
        if websocket is None or websocket.application_state != WebSocketState.CONNECTED:
            return
        try:
            await websocket.close(code=code, reason=reason)
        except RuntimeError:
            logger.debug("Connection %s already closed", connection_id)

    async def close_all(self, *, reason: str | None = None) -> None:
        for connection_id in self.connection_ids():
            await self.disconnect(
                connection_id, code=status.WS_1001_GOING_AWAY, reason=reason
            )


__all__ = ["ConnectionHub", "build_frame", "safe_send_json"]
