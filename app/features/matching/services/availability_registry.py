"""
In-memory availability state for the matching engine.

The registry is the only owner of two maps:
    - waiters: profiles offering roles (working or busy; idle = no entry)
    - queue:   profiles waiting to be paired, in insertion order

Concurrency model:
    Everything runs on one asyncio event loop. Every public operation
    finishes its in-memory mutation before its first await, so the only
    interleaving points are the write-through calls to storage. Any code
    added here must keep that ordering.

Write-through:
    Profile flags (is_matching / matching_roles) are a best-effort mirror
    used for reconnect recovery. A failed write is logged and never changes
    the result of the operation that triggered it. is_matching=False is only
    written while the profile is neither queued nor working in memory.
"""

from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta

from app.db.helpers import DatabaseError
from app.features.matching.domain import (
    MatchableRole,
    MatchingResult,
    MatchPair,
    QueueStatus,
    UserQueueEntry,
    WaiterEntry,
    WaiterStatus,
)
from app.features.matching.domain.models import (
    ALREADY_QUEUED,
    ALREADY_WORKING,
    NO_VALID_ROLES,
    NOT_IN_QUEUE,
    NOW_WORKING,
    STARTED_MATCHING,
    STOPPED_MATCHING,
)
from app.features.matching.services.role_directory import RoleDirectory
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class AvailabilityRegistry:
    def __init__(
        self,
        repository,
        role_directory: RoleDirectory,
        now: Callable[[], datetime] | None = None,
    ):
        self._repository = repository
        self._role_directory = role_directory
        self._now = now or (lambda: datetime.now(UTC))
        self._waiters: dict[str, WaiterEntry] = {}
        self._queue: dict[str, UserQueueEntry] = {}

    # ── Waiters ──

    async def set_waiter_working(
        self,
        profile_id: str,
        requested_roles: Iterable[str],
        caller_permissions: Iterable[str],
    ) -> MatchingResult:
        """Start offering the requested roles the caller is permitted to serve."""
        permitted = set(caller_permissions)
        roles = [r for r in self._role_directory.validate(requested_roles) if r in permitted]

        if not roles:
            return MatchingResult.fail(NO_VALID_ROLES)

        if profile_id in self._waiters:
            return MatchingResult.fail(ALREADY_WORKING)

        self._waiters[profile_id] = WaiterEntry(
            profile_id=profile_id,
            roles=roles,
            status=WaiterStatus.WORKING,
            last_heartbeat=self._now(),
        )
        logger.info("Waiter started working", profile_id=profile_id, roles=roles)

        await self._write_through(profile_id, True, list(roles))
        return MatchingResult.ok(NOW_WORKING)

    async def set_waiter_idle(self, profile_id: str) -> None:
        """Remove the waiter entry if any. Safe to call repeatedly."""
        entry = self._waiters.pop(profile_id, None)
        if entry is not None:
            logger.info("Waiter went idle", profile_id=profile_id, previous_status=entry.status.value)

        await self._clear_flags(profile_id)

    def update_waiter_heartbeat(self, profile_id: str) -> bool:
        entry = self._waiters.get(profile_id)
        if entry is None:
            return False

        entry.last_heartbeat = self._now()
        logger.debug("Waiter heartbeat", profile_id=profile_id, status=entry.status.value)
        return True

    def get_waiter_status(self, profile_id: str) -> WaiterStatus:
        entry = self._waiters.get(profile_id)
        return entry.status if entry else WaiterStatus.IDLE

    def get_waiter_roles(self, profile_id: str) -> list[str]:
        entry = self._waiters.get(profile_id)
        return list(entry.roles) if entry else []

    # ── User queue ──

    async def enqueue_user(self, profile_id: str, requested_role: str) -> MatchingResult:
        if profile_id in self._queue:
            return MatchingResult.fail(ALREADY_QUEUED)

        self._queue[profile_id] = UserQueueEntry(
            profile_id=profile_id,
            requested_role=requested_role,
            started_at=self._now(),
        )
        logger.info("User queued for matching", profile_id=profile_id, role=requested_role)

        await self._write_through(profile_id, True, [requested_role])
        return MatchingResult.ok(STARTED_MATCHING)

    async def dequeue_user(self, profile_id: str) -> None:
        if self._queue.pop(profile_id, None) is not None:
            logger.info("User left matching queue", profile_id=profile_id)

        await self._clear_flags(profile_id)

    async def stop_matching(self, profile_id: str) -> MatchingResult:
        # Check and removal both happen before the first suspension point
        # (dequeue_user pops before awaiting), so a pairing pass cannot claim
        # the user in between and leave the caller with a stale success.
        if profile_id not in self._queue:
            return MatchingResult.fail(NOT_IN_QUEUE)

        await self.dequeue_user(profile_id)
        return MatchingResult.ok(STOPPED_MATCHING)

    def get_user_queue_status(self, profile_id: str) -> QueueStatus:
        entry = self._queue.get(profile_id)
        if entry is None:
            return QueueStatus(in_queue=False, requested_role=None)
        return QueueStatus(in_queue=True, requested_role=entry.requested_role)

    # ── Scheduler primitives ──

    async def expire_stale_waiters(self, timeout: timedelta) -> list[str]:
        """Drop every waiter whose last heartbeat is older than timeout."""
        now = self._now()
        expired = [
            profile_id
            for profile_id, entry in self._waiters.items()
            if now - entry.last_heartbeat > timeout
        ]
        for profile_id in expired:
            del self._waiters[profile_id]

        for profile_id in expired:
            logger.info("Stale waiter expired", profile_id=profile_id, timeout_s=timeout.total_seconds())
            await self._clear_flags(profile_id)

        return expired

    def claim_matches(self) -> list[MatchPair]:
        """
        Pair queued users with working waiters.

        Users are visited in queue order; each takes the first working waiter
        (in the order waiters started working) that offers the requested
        role. The waiter is flipped to busy and the user removed from the
        queue right here, with no await, so no waiter can be claimed twice.
        """
        pairs: list[MatchPair] = []

        for entry in list(self._queue.values()):
            waiter = self._first_available_waiter(entry.requested_role, exclude=entry.profile_id)
            if waiter is None:
                continue

            waiter.status = WaiterStatus.BUSY
            del self._queue[entry.profile_id]
            pairs.append(
                MatchPair(
                    user_id=entry.profile_id,
                    waiter_id=waiter.profile_id,
                    role=entry.requested_role,
                )
            )

        return pairs

    def _first_available_waiter(self, role: str, exclude: str) -> WaiterEntry | None:
        for waiter in self._waiters.values():
            if waiter.profile_id == exclude:
                continue
            if waiter.status is WaiterStatus.WORKING and role in waiter.roles:
                return waiter
        return None

    async def clear_persisted_flags(self, profile_id: str) -> None:
        """Write-through for a profile the scheduler claimed or removed in memory."""
        await self._clear_flags(profile_id)

    # ── Recovery primitives (no write-through: flags are already set) ──

    def restore_waiter(self, profile_id: str, roles: list[MatchableRole]) -> bool:
        if not roles or profile_id in self._waiters:
            return False

        self._waiters[profile_id] = WaiterEntry(
            profile_id=profile_id,
            roles=list(roles),
            status=WaiterStatus.WORKING,
            last_heartbeat=self._now(),
        )
        return True

    def restore_user(self, profile_id: str, requested_role: str) -> bool:
        if profile_id in self._queue:
            return False

        self._queue[profile_id] = UserQueueEntry(
            profile_id=profile_id,
            requested_role=requested_role,
            started_at=self._now(),
        )
        return True

    def has_waiter(self, profile_id: str) -> bool:
        return profile_id in self._waiters

    def is_queued(self, profile_id: str) -> bool:
        return profile_id in self._queue

    # ── Introspection ──

    def counts(self) -> dict[str, int]:
        busy = sum(1 for w in self._waiters.values() if w.status is WaiterStatus.BUSY)
        return {
            "waiters_working": len(self._waiters) - busy,
            "waiters_busy": busy,
            "queued_users": len(self._queue),
        }

    def busy_waiter_ids(self) -> list[str]:
        return [w.profile_id for w in self._waiters.values() if w.status is WaiterStatus.BUSY]

    def _is_matching(self, profile_id: str) -> bool:
        if profile_id in self._queue:
            return True
        waiter = self._waiters.get(profile_id)
        return waiter is not None and waiter.status is WaiterStatus.WORKING

    async def _clear_flags(self, profile_id: str) -> None:
        # Checked when the write is issued, not when the entry was removed:
        # a profile that rejoined in between keeps its persisted True.
        if self._is_matching(profile_id):
            logger.debug("Skipping flag clear, profile is matching again", profile_id=profile_id)
            return

        await self._write_through(profile_id, False)

    async def _write_through(
        self, profile_id: str, is_matching: bool, matching_roles: list[str] | None = None
    ) -> None:
        try:
            await self._repository.update_matching_flags(profile_id, is_matching, matching_roles)
        except DatabaseError as e:
            logger.warning(
                "Matching flag write-through failed",
                profile_id=profile_id,
                is_matching=is_matching,
                operation=e.operation,
                error=str(e),
            )
        except Exception as e:
            logger.warning(
                "Unexpected error writing matching flags",
                profile_id=profile_id,
                is_matching=is_matching,
                error=str(e),
                error_type=type(e).__name__,
            )
