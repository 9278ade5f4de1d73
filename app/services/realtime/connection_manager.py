"""
Live WebSocket connections keyed by profile id.

A profile may hold several sockets at once (multiple tabs or devices);
frames addressed to the profile go to all of them.
"""

from typing import Any

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Send a JSON frame; False if the socket is gone."""
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message", error=str(e))
        return False


class ConnectionManager:
    def __init__(self) -> None:
        self._connections: dict[str, list[WebSocket]] = {}

    def connect(self, profile_id: str, websocket: WebSocket) -> None:
        sockets = self._connections.setdefault(profile_id, [])
        if websocket not in sockets:
            sockets.append(websocket)
        logger.info("Realtime connection opened", profile_id=profile_id, connections=len(sockets))

    def disconnect(self, profile_id: str, websocket: WebSocket) -> None:
        sockets = self._connections.get(profile_id)
        if not sockets or websocket not in sockets:
            return

        sockets.remove(websocket)
        if not sockets:
            del self._connections[profile_id]
        logger.info("Realtime connection closed", profile_id=profile_id, connections=len(sockets))

    def is_connected(self, profile_id: str) -> bool:
        return bool(self._connections.get(profile_id))

    def connection_count(self) -> int:
        return sum(len(sockets) for sockets in self._connections.values())

    async def send_to_profile(self, profile_id: str, data: dict[str, Any]) -> int:
        """Send to every socket of the profile, pruning dead ones. Returns frames sent."""
        delivered = 0
        for websocket in list(self._connections.get(profile_id, ())):
            if await safe_send_json(websocket, data):
                delivered += 1
            else:
                self.disconnect(profile_id, websocket)
        return delivered
