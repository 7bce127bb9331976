"""
Realtime channel.

Clients open /ws?user_id=<id> and receive PUBLISH_UPDATE, VIDEO_UPDATE and
CONTENT_UPDATE events. Incoming messages are ignored except for "ping".
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from postcraft.services.notifier import ConnectionManager, get_notifier

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, user_id: str | None = Query(default=None)):
    manager = get_notifier()
    if not user_id or not isinstance(manager, ConnectionManager):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await manager.connect(user_id, websocket)
    try:
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(user_id, websocket)
        logger.info(f"[ws] user {user_id} disconnected")
