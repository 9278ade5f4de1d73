"""
Matching scheduler.

A fixed-interval background task that, on each tick:
    1. refreshes the matchable role set when the cached copy is stale
    2. drops waiters whose heartbeat is older than the timeout
    3. claims (user, waiter) pairs from the registry
    4. materializes each claimed pair concurrently

Ticks never overlap: a tick that finds the previous one still running is
skipped. An exception inside a tick is logged and the loop keeps going.
"""

import asyncio
import contextlib
import time
from datetime import UTC, datetime, timedelta

from app.features.matching.domain import MatchPair
from app.features.matching.services.availability_registry import AvailabilityRegistry
from app.features.matching.services.match_materializer import MatchMaterializer
from app.features.matching.services.role_directory import RoleDirectory
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class MatchingJobError(Exception):
    """Raised when a tick fails outside the per-pair error handling."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class MatchingJobMetrics:
    """Per-tick counters."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self._started = time.perf_counter()
        self.roles_refreshed = False
        self.expired_waiters = 0
        self.matches_created = 0
        self.match_failures = 0
        self.users_waiting = 0
        self.total_duration_ms = 0.0
        self.errors: list[dict] = []

    def record_expired(self, profile_ids: list[str]):
        self.expired_waiters += len(profile_ids)

    def record_match(self, pair: MatchPair, chat_room_id: str):
        self.matches_created += 1
        logger.debug(
            "Pair materialized",
            user_id=pair.user_id,
            waiter_id=pair.waiter_id,
            chat_room_id=chat_room_id,
            job_run="matching",
        )

    def record_failure(self, pair: MatchPair, error: str):
        self.match_failures += 1
        self.errors.append(
            {
                "user_id": pair.user_id,
                "waiter_id": pair.waiter_id,
                "role": pair.role,
                "error": error,
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )

    def finalize(self, users_waiting: int):
        self.users_waiting = users_waiting
        self.total_duration_ms = (time.perf_counter() - self._started) * 1000

    def to_dict(self) -> dict:
        return {
            "job_run": "matching",
            "start_time": self.start_time.isoformat(),
            "total_duration_ms": round(self.total_duration_ms, 2),
            "roles_refreshed": self.roles_refreshed,
            "expired_waiters": self.expired_waiters,
            "matches_created": self.matches_created,
            "match_failures": self.match_failures,
            "users_waiting": self.users_waiting,
            "errors_count": len(self.errors),
        }


class MatchingJob:
    """
    Background job pairing queued users with working waiters.

    Collaborators and timing are injected, so tests drive `run_once`
    directly with their own registry and clock.
    """

    def __init__(
        self,
        registry: AvailabilityRegistry,
        materializer: MatchMaterializer,
        role_directory: RoleDirectory,
        *,
        heartbeat_timeout: timedelta = timedelta(seconds=90),
        tick_interval: float = 1.0,
        role_refresh_interval: timedelta = timedelta(minutes=5),
    ):
        self._registry = registry
        self._materializer = materializer
        self._role_directory = role_directory
        self.heartbeat_timeout = heartbeat_timeout
        self.tick_interval = tick_interval
        self.role_refresh_interval = role_refresh_interval

        self.is_running = False
        self.last_run_time: datetime | None = None
        self.ticks_completed = 0
        self.ticks_failed = 0
        self.job_metrics = MatchingJobMetrics()
        self._task: asyncio.Task | None = None

    async def run_once(self) -> dict:
        """
        Run a single tick.

        Returns:
            Dict: tick metrics, or a skip marker if a tick is already running

        Raises:
            MatchingJobError: if the tick fails outside per-pair handling
        """
        if self.is_running:
            logger.warning("Matching tick still running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.job_metrics.reset()

            if self._role_directory.is_stale(self.role_refresh_interval):
                self.job_metrics.roles_refreshed = (
                    await self._role_directory.refresh_matchable_roles()
                )

            expired = await self._registry.expire_stale_waiters(self.heartbeat_timeout)
            self.job_metrics.record_expired(expired)

            pairs = self._registry.claim_matches()
            if pairs:
                await self._materialize_pairs(pairs)

            self.job_metrics.finalize(users_waiting=self._registry.counts()["queued_users"])
            self.last_run_time = datetime.now(UTC)
            self.ticks_completed += 1

            metrics = self.job_metrics.to_dict()
            if pairs or expired:
                logger.info("Matching tick completed", **metrics)
            else:
                logger.debug("Matching tick completed", **metrics)
            return metrics

        except Exception as e:
            self.ticks_failed += 1
            logger.error("Matching tick failed", error=str(e), error_type=type(e).__name__)
            raise MatchingJobError(f"Matching tick failed: {e}", operation="run_once") from e

        finally:
            self.is_running = False

    async def _materialize_pairs(self, pairs: list[MatchPair]):
        results = await asyncio.gather(
            *(self._materialize(pair) for pair in pairs), return_exceptions=True
        )
        for pair, result in zip(pairs, results, strict=True):
            if isinstance(result, Exception):
                logger.error(
                    "Unexpected error materializing match",
                    user_id=pair.user_id,
                    waiter_id=pair.waiter_id,
                    error=str(result),
                    error_type=type(result).__name__,
                )
                self.job_metrics.record_failure(pair, f"{type(result).__name__}: {result}")

    async def _materialize(self, pair: MatchPair):
        # The user left the queue in claim_matches; mirror that to storage
        await self._registry.clear_persisted_flags(pair.user_id)

        room = await self._materializer.create_match(pair.user_id, pair.waiter_id)
        if room is None:
            self.job_metrics.record_failure(pair, "chat room was not created")
        else:
            self.job_metrics.record_match(pair, room.id)

    async def run_forever(self):
        logger.info(
            "Starting matching scheduler",
            tick_interval_s=self.tick_interval,
            heartbeat_timeout_s=self.heartbeat_timeout.total_seconds(),
        )

        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(
                    "Error in matching scheduler", error=str(e), error_type=type(e).__name__
                )

            await asyncio.sleep(self.tick_interval)

    def start(self) -> asyncio.Task:
        if self._task is not None and not self._task.done():
            return self._task

        self._task = asyncio.create_task(self.run_forever(), name="matching-scheduler")
        return self._task

    async def stop(self):
        if self._task is None:
            return

        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Matching scheduler stopped", ticks_completed=self.ticks_completed)

    @property
    def scheduled(self) -> bool:
        return self._task is not None and not self._task.done()

    def get_job_status(self) -> dict:
        """
        Get current job status, last tick metrics and registry counts.
        """
        return {
            "job_name": "matching",
            "scheduled": self.scheduled,
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "ticks_completed": self.ticks_completed,
            "ticks_failed": self.ticks_failed,
            "tick_interval_seconds": self.tick_interval,
            "heartbeat_timeout_seconds": self.heartbeat_timeout.total_seconds(),
            "last_run_metrics": self.job_metrics.to_dict() if self.last_run_time else None,
            "registry": self._registry.counts(),
            "busy_waiter_ids": self._registry.busy_waiter_ids(),
            "matchable_roles": sorted(self._role_directory.roles),
        }

    def health_check(self) -> dict:
        """
        Health check for the matching scheduler.

        Unhealthy when the task is not scheduled or no tick has completed
        within ten tick intervals.
        """
        try:
            now = datetime.now(UTC)
            overdue_threshold = timedelta(seconds=max(self.tick_interval * 10, 30))
            is_overdue = (
                self.last_run_time is not None and (now - self.last_run_time) > overdue_threshold
            )

            health_status = {
                "healthy": self.scheduled and not is_overdue,
                "service": "matching_job",
                "scheduled": self.scheduled,
                "is_running": self.is_running,
                "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
                "is_overdue": is_overdue,
                "configuration": {
                    "tick_interval_seconds": self.tick_interval,
                    "heartbeat_timeout_seconds": self.heartbeat_timeout.total_seconds(),
                    "role_refresh_interval_seconds": self.role_refresh_interval.total_seconds(),
                },
            }

            if not self.scheduled:
                health_status["warning"] = "Matching scheduler is not running"
            elif is_overdue:
                health_status["warning"] = (
                    f"Job overdue by {(now - self.last_run_time).total_seconds():.1f} seconds"
                )

            return health_status

        except Exception as e:
            logger.error("Matching job health check failed", error=str(e))
            return {
                "healthy": False,
                "service": "matching_job",
                "error": str(e),
            }
