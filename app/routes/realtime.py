"""
realtime.py
-----------
Purpose:
    The WebSocket endpoint clients keep open while using the support chat.

    - Authenticates with the `token` query parameter.
    - Registers the socket so match notifications reach the profile.
    - Restores queue/waiter state persisted before a restart or reconnect.
    - Answers `{"type": "heartbeat"}` frames, which also keep a working
      waiter alive.

Usage:
    ws://<host>/ws?token=<access_token>
"""

import json
import time

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from app.auth.verify import websocket_profile
from app.features.matching.dependencies import get_connection_manager, get_matching_engine
from app.features.matching.engine import MatchingEngine
from app.infrastructure.observability.logging import get_logger
from app.models.domain.profile_domain import Profile
from app.services.realtime.connection_manager import ConnectionManager, safe_send_json

router = APIRouter()
logger = get_logger(__name__)


def _error_frame(message: str) -> dict:
    return {"type": "error", "message": message}


@router.websocket("/ws")
async def realtime_socket(
    websocket: WebSocket,
    profile: Profile | None = Depends(websocket_profile),
    engine: MatchingEngine = Depends(get_matching_engine),
    connections: ConnectionManager = Depends(get_connection_manager),
):
    await websocket.accept()

    if profile is None:
        await safe_send_json(websocket, _error_frame("Unauthorized"))
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    connections.connect(profile.id, websocket)
    try:
        restored_as = engine.recovery.restore_state(profile)
        if restored_as:
            logger.info("Matching state restored on connect", profile_id=profile.id, restored_as=restored_as)

        while True:
            raw = await websocket.receive_text()
            await _handle_frame(websocket, raw, profile, engine)

    except WebSocketDisconnect as e:
        logger.debug("Realtime client disconnected", profile_id=profile.id, code=e.code)
    finally:
        # Waiter state is left to heartbeat expiry
        connections.disconnect(profile.id, websocket)


async def _handle_frame(websocket: WebSocket, raw: str, profile: Profile, engine: MatchingEngine):
    try:
        frame = json.loads(raw)
    except ValueError:
        await safe_send_json(websocket, _error_frame("Invalid message"))
        return

    frame_type = frame.get("type") if isinstance(frame, dict) else None

    if frame_type == "heartbeat":
        engine.registry.update_waiter_heartbeat(profile.id)
        await safe_send_json(
            websocket, {"type": "heartbeat_ack", "timestamp": int(time.time() * 1000)}
        )
        return

    logger.debug("Unknown realtime frame", profile_id=profile.id, frame_type=frame_type)
    await safe_send_json(websocket, _error_frame(f"Unknown message type: {frame_type}"))
