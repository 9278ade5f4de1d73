"""
Turns a claimed (user, waiter) pair into a persisted support room.

The room insert is retried on transient storage errors by the repository.
A failure that survives the retries is logged and reported as None: the
waiter stays busy and the user stays dequeued until an operator or the
waiter (going idle) clears it.
"""

from app.features.matching.domain import ChatRoomRecord
from app.features.matching.domain.models import MATCH_SUCCESS_EVENT
from app.features.matching.services.availability_registry import AvailabilityRegistry
from app.features.matching.services.notifications import NotificationDispatcher, build_event
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class MatchMaterializer:
    def __init__(
        self, repository, dispatcher: NotificationDispatcher, registry: AvailabilityRegistry
    ):
        self._repository = repository
        self._dispatcher = dispatcher
        self._registry = registry

    async def create_match(self, user_id: str, waiter_id: str) -> ChatRoomRecord | None:
        try:
            room = await self._repository.create_support_room(user_id, waiter_id)
        except Exception as e:
            logger.error(
                "Match materialization failed, waiter left busy",
                user_id=user_id,
                waiter_id=waiter_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        logger.info("Match created", user_id=user_id, waiter_id=waiter_id, chat_room_id=room.id)

        event = build_event(MATCH_SUCCESS_EVENT, {"chat_room_id": room.id})
        await self._dispatcher.deliver_to_user(user_id, event)
        await self._dispatcher.deliver_to_user(waiter_id, event)

        # The user's flag was cleared when the scheduler dequeued them.
        # Skipped by the registry if the waiter went idle and working again.
        await self._registry.clear_persisted_flags(waiter_id)

        return room
