import asyncio
from datetime import timedelta

import pytest

from app.features.matching.domain import WaiterStatus
from app.features.matching.domain.models import (
    ALREADY_QUEUED,
    ALREADY_WORKING,
    NO_VALID_ROLES,
    NOT_IN_QUEUE,
)


async def _load_roles(engine):
    await engine.role_directory.refresh_matchable_roles()
    return engine.registry


# ── Waiters ──


@pytest.mark.asyncio
async def test_set_waiter_working_success(engine, fake_repository):
    registry = await _load_roles(engine)

    result = await registry.set_waiter_working("w1", ["listener"], ["listener"])

    assert result.success is True
    assert registry.get_waiter_status("w1") is WaiterStatus.WORKING
    assert registry.get_waiter_roles("w1") == ["listener"]
    assert fake_repository.flag_writes == [("w1", True, ["listener"])]


@pytest.mark.asyncio
async def test_set_waiter_working_keeps_only_permitted_matchable_roles(engine, fake_repository):
    fake_repository.role_names = ["listener", "therapist"]
    registry = await _load_roles(engine)

    result = await registry.set_waiter_working(
        "w1", ["therapist", "listener", "admin"], ["listener", "admin"]
    )

    assert result.success is True
    assert registry.get_waiter_roles("w1") == ["listener"]


@pytest.mark.asyncio
async def test_set_waiter_working_without_permission_fails(engine, fake_repository):
    registry = await _load_roles(engine)

    result = await registry.set_waiter_working("w1", ["listener"], ["user"])

    assert result.success is False
    assert result.message == NO_VALID_ROLES
    assert registry.get_waiter_status("w1") is WaiterStatus.IDLE
    assert fake_repository.flag_writes == []


@pytest.mark.asyncio
async def test_set_waiter_working_with_unmatchable_role_fails(engine):
    registry = await _load_roles(engine)

    result = await registry.set_waiter_working("w1", ["admin"], ["admin"])

    assert result.message == NO_VALID_ROLES
    assert not registry.has_waiter("w1")


@pytest.mark.asyncio
async def test_set_waiter_working_twice_fails(engine):
    registry = await _load_roles(engine)
    await registry.set_waiter_working("w1", ["listener"], ["listener"])

    result = await registry.set_waiter_working("w1", ["listener"], ["listener"])

    assert result.success is False
    assert result.message == ALREADY_WORKING


@pytest.mark.asyncio
async def test_invalid_roles_reported_before_already_working(engine):
    registry = await _load_roles(engine)
    await registry.set_waiter_working("w1", ["listener"], ["listener"])

    result = await registry.set_waiter_working("w1", ["admin"], ["listener"])

    assert result.message == NO_VALID_ROLES


@pytest.mark.asyncio
async def test_busy_waiter_cannot_go_working_again(engine):
    registry = await _load_roles(engine)
    await registry.set_waiter_working("w1", ["listener"], ["listener"])
    await registry.enqueue_user("u1", "listener")
    registry.claim_matches()

    result = await registry.set_waiter_working("w1", ["listener"], ["listener"])

    assert registry.get_waiter_status("w1") is WaiterStatus.BUSY
    assert result.message == ALREADY_WORKING


@pytest.mark.asyncio
async def test_set_waiter_idle_is_idempotent(engine, fake_repository):
    registry = await _load_roles(engine)
    await registry.set_waiter_working("w1", ["listener"], ["listener"])

    await registry.set_waiter_idle("w1")
    await registry.set_waiter_idle("w1")

    assert registry.get_waiter_status("w1") is WaiterStatus.IDLE
    assert registry.get_waiter_roles("w1") == []
    assert fake_repository.is_matching("w1") is False


@pytest.mark.asyncio
async def test_idle_then_working_again(engine):
    registry = await _load_roles(engine)
    await registry.set_waiter_working("w1", ["listener"], ["listener"])
    await registry.set_waiter_idle("w1")

    result = await registry.set_waiter_working("w1", ["listener"], ["listener"])

    assert result.success is True
    assert registry.get_waiter_status("w1") is WaiterStatus.WORKING


@pytest.mark.asyncio
async def test_heartbeat_updates_known_waiter_only(engine, clock):
    registry = await _load_roles(engine)
    assert registry.update_waiter_heartbeat("w1") is False

    await registry.set_waiter_working("w1", ["listener"], ["listener"])
    clock.advance(30)

    assert registry.update_waiter_heartbeat("w1") is True
    assert registry._waiters["w1"].last_heartbeat == clock.current


# ── User queue ──


@pytest.mark.asyncio
async def test_enqueue_user_and_status(engine, fake_repository):
    registry = engine.registry

    result = await registry.enqueue_user("u1", "listener")

    assert result.success is True
    status = registry.get_user_queue_status("u1")
    assert status.in_queue is True
    assert status.requested_role == "listener"
    assert fake_repository.flag_writes == [("u1", True, ["listener"])]


@pytest.mark.asyncio
async def test_enqueue_twice_fails(engine):
    await engine.registry.enqueue_user("u1", "listener")

    result = await engine.registry.enqueue_user("u1", "therapist")

    assert result.message == ALREADY_QUEUED
    assert engine.registry.get_user_queue_status("u1").requested_role == "listener"


@pytest.mark.asyncio
async def test_stop_matching_when_not_queued(engine, fake_repository):
    result = await engine.registry.stop_matching("u1")

    assert result.success is False
    assert result.message == NOT_IN_QUEUE
    assert fake_repository.flag_writes == []


@pytest.mark.asyncio
async def test_stop_matching_round_trip(engine, fake_repository):
    registry = engine.registry
    await registry.enqueue_user("u1", "listener")

    result = await registry.stop_matching("u1")

    assert result.success is True
    assert registry.get_user_queue_status("u1").in_queue is False
    assert registry.get_user_queue_status("u1").requested_role is None
    assert fake_repository.is_matching("u1") is False


@pytest.mark.asyncio
async def test_write_through_failure_does_not_change_result(engine, fake_repository):
    registry = await _load_roles(engine)
    fake_repository.fail_flag_writes = True

    working = await registry.set_waiter_working("w1", ["listener"], ["listener"])
    queued = await registry.enqueue_user("u1", "listener")

    assert working.success is True
    assert queued.success is True
    assert registry.get_waiter_status("w1") is WaiterStatus.WORKING
    assert registry.is_queued("u1")


# ── Pairing pass ──


@pytest.mark.asyncio
async def test_claim_matches_one_waiter_two_users(engine):
    registry = await _load_roles(engine)
    await registry.set_waiter_working("w1", ["listener"], ["listener"])
    await registry.enqueue_user("u1", "listener")
    await registry.enqueue_user("u2", "listener")

    pairs = registry.claim_matches()

    assert [(p.user_id, p.waiter_id) for p in pairs] == [("u1", "w1")]
    assert registry.get_waiter_status("w1") is WaiterStatus.BUSY
    assert not registry.is_queued("u1")
    assert registry.get_user_queue_status("u2").in_queue is True


@pytest.mark.asyncio
async def test_claim_matches_takes_waiters_in_working_order(engine):
    registry = await _load_roles(engine)
    await registry.set_waiter_working("w1", ["listener"], ["listener"])
    await registry.set_waiter_working("w2", ["listener"], ["listener"])
    await registry.enqueue_user("u1", "listener")
    await registry.enqueue_user("u2", "listener")
    await registry.enqueue_user("u3", "listener")

    pairs = registry.claim_matches()

    assert [(p.user_id, p.waiter_id) for p in pairs] == [("u1", "w1"), ("u2", "w2")]
    assert registry.is_queued("u3")


@pytest.mark.asyncio
async def test_claim_matches_requires_role_overlap(engine, fake_repository):
    fake_repository.role_names = ["listener", "therapist"]
    registry = await _load_roles(engine)
    await registry.set_waiter_working("w1", ["therapist"], ["therapist"])
    await registry.enqueue_user("u1", "listener")
    await registry.enqueue_user("u2", "therapist")

    pairs = registry.claim_matches()

    assert [(p.user_id, p.waiter_id, p.role) for p in pairs] == [("u2", "w1", "therapist")]
    assert registry.is_queued("u1")


@pytest.mark.asyncio
async def test_claim_matches_never_pairs_profile_with_itself(engine):
    registry = await _load_roles(engine)
    await registry.set_waiter_working("p1", ["listener"], ["listener"])
    await registry.enqueue_user("p1", "listener")

    assert registry.claim_matches() == []
    assert registry.is_queued("p1")
    assert registry.get_waiter_status("p1") is WaiterStatus.WORKING


@pytest.mark.asyncio
async def test_busy_waiter_is_not_claimed_again(engine):
    registry = await _load_roles(engine)
    await registry.set_waiter_working("w1", ["listener"], ["listener"])
    await registry.enqueue_user("u1", "listener")
    registry.claim_matches()
    await registry.enqueue_user("u2", "listener")

    assert registry.claim_matches() == []
    assert registry.is_queued("u2")


@pytest.mark.asyncio
async def test_claim_matches_empty_queue(engine):
    registry = await _load_roles(engine)
    await registry.set_waiter_working("w1", ["listener"], ["listener"])

    assert registry.claim_matches() == []


# ── Heartbeat expiry ──


@pytest.mark.asyncio
async def test_expire_stale_waiters(engine, clock, fake_repository):
    registry = await _load_roles(engine)
    await registry.set_waiter_working("stale", ["listener"], ["listener"])
    clock.advance(81)
    await registry.set_waiter_working("fresh", ["listener"], ["listener"])
    clock.advance(10)

    expired = await registry.expire_stale_waiters(timedelta(seconds=90))

    assert expired == ["stale"]
    assert registry.get_waiter_status("stale") is WaiterStatus.IDLE
    assert registry.get_waiter_status("fresh") is WaiterStatus.WORKING
    assert fake_repository.is_matching("stale") is False
    assert fake_repository.is_matching("fresh") is True


@pytest.mark.asyncio
async def test_waiter_exactly_at_timeout_survives(engine, clock):
    registry = await _load_roles(engine)
    await registry.set_waiter_working("w1", ["listener"], ["listener"])
    clock.advance(90)

    assert await registry.expire_stale_waiters(timedelta(seconds=90)) == []
    assert registry.has_waiter("w1")


@pytest.mark.asyncio
async def test_counts_and_busy_ids(engine):
    registry = await _load_roles(engine)
    await registry.set_waiter_working("w1", ["listener"], ["listener"])
    await registry.set_waiter_working("w2", ["listener"], ["listener"])
    await registry.enqueue_user("u1", "listener")
    await registry.enqueue_user("u2", "therapist")
    registry.claim_matches()

    assert registry.counts() == {"waiters_working": 1, "waiters_busy": 1, "queued_users": 1}
    assert registry.busy_waiter_ids() == ["w1"]


@pytest.mark.asyncio
async def test_expiry_keeps_flag_of_waiter_that_rejoined(
    yielding_engine, clock, yielding_repository
):
    registry = await _load_roles(yielding_engine)
    await registry.set_waiter_working("a", ["listener"], ["listener"])
    await registry.set_waiter_working("b", ["listener"], ["listener"])
    clock.advance(91)

    # "b" goes working again while the expiry write for "a" is in flight
    expired, rejoined = await asyncio.gather(
        registry.expire_stale_waiters(timedelta(seconds=90)),
        registry.set_waiter_working("b", ["listener"], ["listener"]),
    )

    assert expired == ["a", "b"]
    assert rejoined.success is True
    assert registry.get_waiter_status("b") is WaiterStatus.WORKING
    assert yielding_repository.is_matching("a") is False
    assert yielding_repository.is_matching("b") is True


@pytest.mark.asyncio
async def test_idle_waiter_still_queued_keeps_flag(engine, fake_repository):
    registry = await _load_roles(engine)
    await registry.set_waiter_working("p1", ["listener"], ["listener"])
    await registry.enqueue_user("p1", "listener")

    await registry.set_waiter_idle("p1")

    assert registry.is_queued("p1")
    assert fake_repository.is_matching("p1") is True
