"""
Cached set of role names flagged as matchable.

Loaded once before the scheduler's first tick, re-loaded after admin role
mutations and whenever the cache is older than the configured interval.
"""

from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta

from app.features.matching.domain import MatchableRole
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class RoleDirectory:
    def __init__(self, repository, now: Callable[[], datetime] | None = None):
        self._repository = repository
        self._now = now or (lambda: datetime.now(UTC))
        self._roles: frozenset[str] = frozenset()
        self._loaded_at: datetime | None = None

    @property
    def roles(self) -> frozenset[str]:
        return self._roles

    @property
    def loaded_at(self) -> datetime | None:
        return self._loaded_at

    async def refresh_matchable_roles(self) -> bool:
        """
        Reload the matchable set from storage.

        A storage failure (e.g. the role table is not migrated yet) keeps the
        previous set and is reported through the return value only.
        """
        try:
            names = await self._repository.list_matchable_role_names()
        except Exception as e:
            logger.warning(
                "Matchable role refresh failed, keeping previous set",
                error=str(e),
                error_type=type(e).__name__,
                cached_roles=sorted(self._roles),
            )
            return False

        previous = self._roles
        self._roles = frozenset(names)
        self._loaded_at = self._now()

        if previous != self._roles:
            logger.info(
                "Matchable roles refreshed",
                roles=sorted(self._roles),
                added=sorted(self._roles - previous),
                removed=sorted(previous - self._roles),
            )
        return True

    def is_matchable_role(self, name: str) -> bool:
        return name in self._roles

    def validate(self, names: Iterable[str]) -> list[MatchableRole]:
        """Keep only currently matchable names, first occurrence order, no duplicates."""
        valid: list[MatchableRole] = []
        for name in names:
            if name in self._roles and name not in valid:
                valid.append(MatchableRole(name))
        return valid

    def is_stale(self, max_age: timedelta) -> bool:
        if self._loaded_at is None:
            return True
        return self._now() - self._loaded_at >= max_age
