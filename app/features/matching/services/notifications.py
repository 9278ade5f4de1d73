"""Out-of-band events pushed to a profile's live connections."""

from typing import Any

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def build_event(event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {"type": event_type, "payload": payload}


class NotificationDispatcher:
    """Fire-and-forget delivery; a profile with no connection is a no-op."""

    def __init__(self, transport):
        self._transport = transport

    async def deliver_to_user(self, profile_id: str, event: dict[str, Any]) -> int:
        try:
            delivered = await self._transport.send_to_profile(profile_id, event)
        except Exception as e:
            logger.warning(
                "Realtime delivery failed",
                profile_id=profile_id,
                event_type=event.get("type"),
                error=str(e),
            )
            return 0

        if delivered == 0:
            logger.debug("No live connection for event", profile_id=profile_id, event_type=event.get("type"))
        return delivered
