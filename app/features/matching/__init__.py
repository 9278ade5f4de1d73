"""
Support-chat matching feature package.

Everything the matching engine needs is co-located here: domain models,
the persistence layer, the in-memory services, the scheduler job and the
HTTP router. `engine.MatchingEngine` wires the pieces together.
"""

from .api.router import router as matching_router  # noqa: F401
from .dependencies import get_matching_engine, matching_engine  # noqa: F401
from .engine import MatchingEngine  # noqa: F401
