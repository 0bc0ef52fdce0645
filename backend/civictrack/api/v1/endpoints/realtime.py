"""
WebSocket endpoint for realtime notifications.

Authentication uses the auth cookie, or a ``token`` query parameter for
clients that cannot send cookies on the upgrade request.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from civictrack.core.config import settings
from civictrack.core.database import AsyncSessionLocal
from civictrack.core.security import resolve_user
from civictrack.services.realtime import (
    RealtimeChannel,
    department_room,
    get_realtime_channel,
    user_room,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def realtime_socket(
    websocket: WebSocket,
    token: Optional[str] = None,
    channel: RealtimeChannel = Depends(get_realtime_channel),
):
    token = websocket.cookies.get(settings.AUTH_COOKIE_NAME) or token
    try:
        async with AsyncSessionLocal() as db:
            user = await resolve_user(db, token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    connection_id = await channel.connect(websocket)
    channel.join_room(connection_id, user_room(user.id))
    if user.department_id is not None:
        channel.join_room(connection_id, department_room(user.department_id))
    logger.info("Realtime connection %s opened for user %s", connection_id, user.id)

    try:
        while True:
            # Inbound frames are only keep-alives.
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        channel.disconnect(connection_id)
        logger.info("Realtime connection %s closed", connection_id)
