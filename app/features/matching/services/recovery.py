"""
Rebuilds in-memory availability from persisted profile flags.

Runs whenever a profile's realtime connection opens, so a process restart
or a client reconnect does not lose "in queue" or "working" status. Persisted
flags win here; while the process is alive the registry is authoritative, so
an existing entry is never overwritten.
"""

from collections.abc import Iterable
from typing import Literal

from app.features.matching.domain import MatchableRole
from app.features.matching.services.availability_registry import AvailabilityRegistry
from app.features.matching.services.role_directory import RoleDirectory
from app.infrastructure.observability.logging import get_logger
from app.models.domain.profile_domain import Profile

logger = get_logger(__name__)

RestoredAs = Literal["waiter", "user"]


class RecoveryCoordinator:
    def __init__(
        self,
        registry: AvailabilityRegistry,
        role_directory: RoleDirectory,
        fallback_waiter_roles: Iterable[str] = (),
    ):
        self._registry = registry
        self._role_directory = role_directory
        self._fallback_waiter_roles = frozenset(fallback_waiter_roles)

    def waiter_roles(self) -> frozenset[str]:
        """Matchable set, or the configured list while the directory is empty."""
        return self._role_directory.roles or self._fallback_waiter_roles

    def restore_state(self, profile: Profile) -> RestoredAs | None:
        if not profile.is_matching:
            return None

        waiter_roles = self.waiter_roles()

        # The flags do not record which side queued them, so a profile able to
        # serve its stored role comes back as a waiter even if it had queued.
        if profile.has_any_permission(waiter_roles):
            if self._registry.has_waiter(profile.id):
                return None

            permitted = set(profile.permission)
            roles = [
                MatchableRole(role)
                for role in dict.fromkeys(profile.matching_roles)
                if role in waiter_roles and role in permitted
            ]
            if not self._registry.restore_waiter(profile.id, roles):
                return None

            logger.info("Waiter state restored", profile_id=profile.id, roles=roles)
            return "waiter"

        if self._registry.is_queued(profile.id) or not profile.matching_roles:
            return None

        requested_role = profile.matching_roles[0]
        if requested_role not in waiter_roles:
            logger.debug(
                "Skipping queue restore for unknown role", profile_id=profile.id, role=requested_role
            )
            return None

        if not self._registry.restore_user(profile.id, requested_role):
            return None

        logger.info("Queue entry restored", profile_id=profile.id, role=requested_role)
        return "user"
