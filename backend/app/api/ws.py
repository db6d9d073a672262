"""WebSocket endpoint serving the realtime messaging protocol."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Dict, TypeVar

from fastapi import APIRouter, Depends, WebSocket
from fastapi.websockets import WebSocketDisconnect, WebSocketState

from app.config import get_settings
from zap.realtime.coordinator import ConnectionSession
from zap.realtime.errors import AuthError
from zap.realtime.managers import RealtimeContext, get_realtime
from zap.realtime.transport import build_frame, safe_send_json

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)


T = TypeVar("T")


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield messages from *receiver* while sending keepalive pings when idle."""

    ping_payload = ping_payload or {"type": "ping"}
    timeout = float(timeout_seconds) if timeout_seconds else 0.0
    interval = float(ping_interval_seconds) if ping_interval_seconds else 0.0
    last_activity = time.monotonic()
    last_ping_sent: float | None = None

    while True:
        try:
            if timeout > 0:
                message = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                message = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                break

            now = time.monotonic()
            should_ping = False
            if interval <= 0:
                should_ping = True
            elif now - last_activity >= interval and (
                last_ping_sent is None or now - last_ping_sent >= interval
            ):
                should_ping = True

            if should_ping:
                if not await safe_send_json(websocket, ping_payload):
                    break
                last_ping_sent = now
            continue
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            raise
        except (RuntimeError, WebSocketDisconnect):
            break
        else:
            last_activity = time.monotonic()
            last_ping_sent = None
            yield message


def _extract_token(websocket: WebSocket) -> str | None:
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
    return token or None


async def _send_error(websocket: WebSocket, detail: str) -> None:
    await safe_send_json(websocket, build_frame("error", {"message": detail}))


@router.websocket("/ws")
async def websocket_realtime(
    websocket: WebSocket,
    realtime: RealtimeContext = Depends(get_realtime),
) -> None:
    """Serve one authenticated realtime connection until either side closes it."""

    await websocket.accept()
    session = ConnectionSession(realtime, websocket)
    try:
        await session.authenticate(_extract_token(websocket))
    except AuthError:
        return

    try:
        await session.activate()
        async for raw_message in iter_keepalive_messages(
            websocket,
            websocket.receive_text,
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
        ):
            if not raw_message:
                continue
            try:
                payload = json.loads(raw_message)
            except json.JSONDecodeError:
                await _send_error(websocket, "Invalid payload")
                continue

            if isinstance(payload, dict):
                frame_type = payload.get("type")
                if frame_type == "ping":
                    await safe_send_json(websocket, {"type": "pong"})
                    continue
                if frame_type == "pong":
                    continue

            await session.handle_frame(payload)
    finally:
        await session.close()
        logger.info("Connection %s closed", session.connection_id)
