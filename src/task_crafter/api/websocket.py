"""WebSocket endpoint of the update relay."""

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from task_crafter.relay.client import TASK_UPDATE_EVENT
from task_crafter.websocket.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)

router = APIRouter()


def _is_task_update(data: str) -> bool:
    try:
        envelope = json.loads(data)
    except json.JSONDecodeError:
        return False
    return isinstance(envelope, dict) and envelope.get("event") == TASK_UPDATE_EVENT


def _origin_allowed(origin: str | None, allowed: list[str]) -> bool:
    # Non-browser clients send no Origin header
    return origin is None or "*" in allowed or origin in allowed


@router.websocket("/ws")
async def relay_endpoint(websocket: WebSocket) -> None:
    """Relay endpoint: forwards each task update to every other session.

    Args:
        websocket: WebSocket connection
    """
    manager: ConnectionManager = websocket.app.state.connection_manager
    origin = websocket.headers.get("origin")
    if not _origin_allowed(origin, websocket.app.state.client_origins):
        logger.warning(f"[Relay] Rejecting connection from origin {origin}")
        await websocket.close(code=1008, reason="Origin not allowed")
        return

    await manager.connect(websocket)
    try:
        while True:
            data = await websocket.receive_text()

            if data == "ping":
                manager.send_personal("pong", websocket)
                continue

            if not _is_task_update(data):
                logger.debug(f"[Relay] Ignoring message: {data[:200]}")
                continue

            count = manager.broadcast(data, exclude=websocket)
            logger.info(f"[Relay] Task update broadcast to {count} sessions")

    except WebSocketDisconnect:
        logger.info("[Relay] Client disconnected normally")
        manager.disconnect(websocket)
    except Exception as e:
        logger.error(f"[Relay] Error: {e}", exc_info=True)
        manager.disconnect(websocket)
