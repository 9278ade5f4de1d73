"""
Composition of the matching engine.

One MatchingEngine owns one set of components sharing one registry. The
application builds a single instance at startup; tests build their own with
fake storage, a fake transport and a controllable clock.
"""

from collections.abc import Callable, Iterable
from datetime import datetime, timedelta

from app.features.matching.jobs.matching_job import MatchingJob
from app.features.matching.services.availability_registry import AvailabilityRegistry
from app.features.matching.services.match_materializer import MatchMaterializer
from app.features.matching.services.notifications import NotificationDispatcher
from app.features.matching.services.recovery import RecoveryCoordinator
from app.features.matching.services.role_directory import RoleDirectory
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class MatchingEngine:
    def __init__(
        self,
        repository,
        transport,
        *,
        heartbeat_timeout: timedelta = timedelta(seconds=90),
        tick_interval: float = 1.0,
        role_refresh_interval: timedelta = timedelta(minutes=5),
        fallback_waiter_roles: Iterable[str] = (),
        now: Callable[[], datetime] | None = None,
    ):
        self.repository = repository
        self.role_directory = RoleDirectory(repository, now=now)
        self.registry = AvailabilityRegistry(repository, self.role_directory, now=now)
        self.dispatcher = NotificationDispatcher(transport)
        self.materializer = MatchMaterializer(repository, self.dispatcher, self.registry)
        self.recovery = RecoveryCoordinator(
            self.registry, self.role_directory, fallback_waiter_roles
        )
        self.job = MatchingJob(
            self.registry,
            self.materializer,
            self.role_directory,
            heartbeat_timeout=heartbeat_timeout,
            tick_interval=tick_interval,
            role_refresh_interval=role_refresh_interval,
        )

    async def start(self) -> None:
        """Load the matchable roles, then start ticking."""
        loaded = await self.role_directory.refresh_matchable_roles()
        logger.info(
            "Matching engine starting",
            roles_loaded=loaded,
            matchable_roles=sorted(self.role_directory.roles),
        )
        self.job.start()

    async def stop(self) -> None:
        await self.job.stop()
