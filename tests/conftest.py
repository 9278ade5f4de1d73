from datetime import timedelta

import pytest

from app.features.matching.engine import MatchingEngine
from tests.fakes import (
    FakeClock,
    FakeMatchingRepository,
    RecordingTransport,
    YieldingMatchingRepository,
)


def _build_engine(repository, transport, clock) -> MatchingEngine:
    return MatchingEngine(
        repository,
        transport,
        heartbeat_timeout=timedelta(seconds=90),
        tick_interval=0.01,
        role_refresh_interval=timedelta(minutes=5),
        fallback_waiter_roles=["listener", "psychologist", "therapist"],
        now=clock,
    )


@pytest.fixture
def fake_repository():
    return FakeMatchingRepository()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(fake_repository, transport, clock):
    return _build_engine(fake_repository, transport, clock)


@pytest.fixture
def yielding_repository():
    return YieldingMatchingRepository()


@pytest.fixture
def yielding_engine(yielding_repository, transport, clock):
    """Engine whose flag writes suspend, so other operations can interleave."""
    return _build_engine(yielding_repository, transport, clock)
