from .models import (
    ChatRoomRecord,
    MatchableRole,
    MatchingResult,
    MatchPair,
    QueueStatus,
    UserQueueEntry,
    WaiterEntry,
    WaiterStatus,
)

__all__ = [
    "ChatRoomRecord",
    "MatchableRole",
    "MatchingResult",
    "MatchPair",
    "QueueStatus",
    "UserQueueEntry",
    "WaiterEntry",
    "WaiterStatus",
]
