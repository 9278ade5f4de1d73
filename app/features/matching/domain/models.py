"""
Domain models for the matching engine.

Plain dataclasses for the transient availability state plus the small value
objects the registry hands back to callers. No I/O lives here.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import NewType

# A role name that was present in the matchable set when it was validated
MatchableRole = NewType("MatchableRole", str)


class WaiterStatus(str, Enum):
    IDLE = "idle"  # never stored: idle is the absence of an entry
    WORKING = "working"
    BUSY = "busy"


@dataclass(slots=True)
class WaiterEntry:
    """A profile currently offering one or more roles."""

    profile_id: str
    roles: list[MatchableRole]
    status: WaiterStatus
    last_heartbeat: datetime


@dataclass(slots=True)
class UserQueueEntry:
    """A profile waiting to be paired for a single role."""

    profile_id: str
    requested_role: str
    started_at: datetime


@dataclass(slots=True, frozen=True)
class MatchingResult:
    success: bool
    message: str

    @classmethod
    def ok(cls, message: str) -> "MatchingResult":
        return cls(success=True, message=message)

    @classmethod
    def fail(cls, message: str) -> "MatchingResult":
        return cls(success=False, message=message)


@dataclass(slots=True, frozen=True)
class QueueStatus:
    in_queue: bool
    requested_role: str | None = None


@dataclass(slots=True, frozen=True)
class MatchPair:
    """A (user, waiter) pairing claimed by the scheduler."""

    user_id: str
    waiter_id: str
    role: str


@dataclass(slots=True)
class ChatRoomRecord:
    """Represents a chatting_room row created for a match."""

    id: str
    participant_ids: list[str]
    type: str
    owner_id: str
    status: str
    created_at: datetime | None = None


# Result messages surfaced to API callers
NO_VALID_ROLES = "No valid roles to offer"
ALREADY_WORKING = "Already working"
ALREADY_QUEUED = "Already in matching queue"
NOT_IN_QUEUE = "Not in matching queue"
NOW_WORKING = "Now accepting matches"
STARTED_MATCHING = "Started matching"
STOPPED_MATCHING = "Stopped matching"
NOW_IDLE = "Stopped accepting matches"
NOT_WORKING = "Not currently working"
ROLE_NOT_MATCHABLE = "Role is not available for matching"

MATCH_SUCCESS_EVENT = "match_success"

SUPPORT_ROOM_NAME = "Private Support Session"
SUPPORT_ROOM_TYPE = "private-chat-for-support"
ROOM_STATUS_ACTIVE = "active"
