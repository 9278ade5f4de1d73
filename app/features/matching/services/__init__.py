"""
Service layer for the matching engine.
"""

from .availability_registry import AvailabilityRegistry
from .match_materializer import MatchMaterializer
from .notifications import NotificationDispatcher, build_event
from .recovery import RecoveryCoordinator
from .role_directory import RoleDirectory

__all__ = [
    "AvailabilityRegistry",
    "MatchMaterializer",
    "NotificationDispatcher",
    "RecoveryCoordinator",
    "RoleDirectory",
    "build_event",
]
