"""
Process-wide matching engine wired from settings.

Routes reach the engine through `get_matching_engine` so tests can swap it
with `app.dependency_overrides`.
"""

from datetime import timedelta

from app.config import settings
from app.features.matching.engine import MatchingEngine
from app.features.matching.repository import MatchingRepository
from app.services.realtime.connection_manager import ConnectionManager

connection_manager = ConnectionManager()

matching_engine = MatchingEngine(
    MatchingRepository(),
    connection_manager,
    heartbeat_timeout=timedelta(seconds=settings.WAITER_HEARTBEAT_TIMEOUT_SECONDS),
    tick_interval=settings.MATCHING_TICK_INTERVAL_SECONDS,
    role_refresh_interval=timedelta(seconds=settings.ROLE_REFRESH_INTERVAL_SECONDS),
    fallback_waiter_roles=settings.MATCHING_FALLBACK_WAITER_ROLES,
)


def get_matching_engine() -> MatchingEngine:
    return matching_engine


def get_connection_manager() -> ConnectionManager:
    return connection_manager
