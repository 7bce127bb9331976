"""
Realtime notifier.

Pushes job and content lifecycle events to the user's connected WebSocket
clients. Delivery is best effort: no connected client is not an error, and a
socket that fails to send is dropped.

Event shape: {"type": "PUBLISH_UPDATE" | "VIDEO_UPDATE" | "CONTENT_UPDATE", "data": {...}}
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)

PUBLISH_UPDATE = "PUBLISH_UPDATE"
VIDEO_UPDATE = "VIDEO_UPDATE"
CONTENT_UPDATE = "CONTENT_UPDATE"


class Notifier(Protocol):
    async def notify(self, user_id: str, event: dict[str, Any]) -> bool: ...


def event(event_type: str, data: dict[str, Any]) -> dict[str, Any]:
    return {"type": event_type, "data": data}


class ConnectionManager:
    """Per-user set of open WebSockets."""

    def __init__(self):
        self._sockets: dict[str, set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._sockets.setdefault(user_id, set()).add(websocket)
        logger.info(f"[ws] user {user_id} connected ({self.connection_count(user_id)} open)")

    async def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            sockets = self._sockets.get(user_id)
            if sockets is None:
                return
            sockets.discard(websocket)
            if not sockets:
                del self._sockets[user_id]

    def connection_count(self, user_id: str) -> int:
        return len(self._sockets.get(user_id, ()))

    async def notify(self, user_id: str, event: dict[str, Any]) -> bool:
        sockets = list(self._sockets.get(user_id, ()))
        if not sockets:
            return False

        payload = jsonable_encoder(event)
        delivered = False
        for websocket in sockets:
            try:
                await websocket.send_json(payload)
                delivered = True
            except Exception as exc:
                logger.warning(f"[ws] dropping socket for user {user_id}: {exc}")
                await self.disconnect(user_id, websocket)
        return delivered


_notifier: Notifier | None = None


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = ConnectionManager()
    return _notifier


def set_notifier(notifier: Notifier | None) -> None:
    global _notifier
    _notifier = notifier


async def notify(user_id: str, event_type: str, data: dict[str, Any]) -> bool:
    """Fire one event; never raises into the caller."""
    try:
        return await get_notifier().notify(user_id, event(event_type, data))
    except Exception as exc:
        logger.warning(f"[notify] {event_type} for user {user_id} not delivered: {exc}")
        return False
