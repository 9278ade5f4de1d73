"""
Matching routes.

    POST /match/start             - join the queue for one role
    POST /match/stop              - leave the queue
    GET  /match/status            - queue status of the caller
    GET  /match/waiter/status     - waiter status and offered roles
    POST /match/waiter/working    - start offering roles
    POST /match/waiter/idle       - stop offering roles
    POST /match/waiter/heartbeat  - keep a working waiter alive
    GET  /match/roles             - current matchable role names
    POST /match/roles/refresh     - reload matchable roles (admin)

Registry failures are typed results; a failed result becomes a 400 with the
result message as detail.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from app.auth.verify import current_profile
from app.config import settings
from app.features.matching.api.schemas import (
    MatchingResponse,
    QueueStatusData,
    RolesData,
    SetWorkingRequest,
    StartMatchingRequest,
    WaiterStatusData,
)
from app.features.matching.dependencies import get_matching_engine
from app.features.matching.domain import MatchingResult
from app.features.matching.domain.models import NOT_WORKING, NOW_IDLE, ROLE_NOT_MATCHABLE
from app.features.matching.engine import MatchingEngine
from app.infrastructure.observability.logging import get_logger
from app.models.domain.profile_domain import Profile

router = APIRouter(prefix="/match", tags=["matching"])
logger = get_logger(__name__)


def _respond(result: MatchingResult, data=None) -> MatchingResponse:
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.message)
    return MatchingResponse(success=True, message=result.message, data=data)


def _roles_data(engine: MatchingEngine) -> RolesData:
    loaded_at = engine.role_directory.loaded_at
    return RolesData(
        roles=sorted(engine.role_directory.roles),
        loaded_at=loaded_at.isoformat() if loaded_at else None,
    )


# ── User side ──


@router.post("/start", response_model=MatchingResponse)
async def start_matching(
    request: StartMatchingRequest,
    profile: Profile = Depends(current_profile),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    """
    Join the matching queue for a role.

    Raises:
        400: Role not matchable, or already in the queue
    """
    if not engine.role_directory.is_matchable_role(request.role):
        logger.info("Rejected matching request for role", profile_id=profile.id, role=request.role)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=ROLE_NOT_MATCHABLE)

    result = await engine.registry.enqueue_user(profile.id, request.role)
    return _respond(result, QueueStatusData(in_queue=True, requested_role=request.role))


@router.post("/stop", response_model=MatchingResponse)
async def stop_matching(
    profile: Profile = Depends(current_profile),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    result = await engine.registry.stop_matching(profile.id)
    return _respond(result, QueueStatusData(in_queue=False))


@router.get("/status", response_model=MatchingResponse)
async def get_matching_status(
    profile: Profile = Depends(current_profile),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    queue_status = engine.registry.get_user_queue_status(profile.id)
    return MatchingResponse(
        success=True,
        message="In matching queue" if queue_status.in_queue else "Not in matching queue",
        data=QueueStatusData(
            in_queue=queue_status.in_queue, requested_role=queue_status.requested_role
        ),
    )


# ── Waiter side ──


@router.get("/waiter/status", response_model=MatchingResponse)
async def get_waiter_status(
    profile: Profile = Depends(current_profile),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    waiter_status = engine.registry.get_waiter_status(profile.id)
    return MatchingResponse(
        success=True,
        message=f"Waiter is {waiter_status.value}",
        data=WaiterStatusData(
            status=waiter_status.value, roles=engine.registry.get_waiter_roles(profile.id)
        ),
    )


@router.post("/waiter/working", response_model=MatchingResponse)
async def set_working(
    request: SetWorkingRequest,
    profile: Profile = Depends(current_profile),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    """
    Start offering roles. Only roles that are matchable and present in the
    caller's permissions are kept.

    Raises:
        400: No valid roles, or already working/busy
    """
    registry = engine.registry
    result = await registry.set_waiter_working(profile.id, request.roles, profile.permission)
    return _respond(
        result,
        WaiterStatusData(
            status=registry.get_waiter_status(profile.id).value,
            roles=registry.get_waiter_roles(profile.id),
        ),
    )


@router.post("/waiter/idle", response_model=MatchingResponse)
async def set_idle(
    profile: Profile = Depends(current_profile),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    await engine.registry.set_waiter_idle(profile.id)
    return MatchingResponse(
        success=True, message=NOW_IDLE, data=WaiterStatusData(status="idle", roles=[])
    )


@router.post("/waiter/heartbeat", response_model=MatchingResponse)
async def waiter_heartbeat(
    profile: Profile = Depends(current_profile),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    """Keep a working waiter alive. A no-op for an idle caller."""
    recorded = engine.registry.update_waiter_heartbeat(profile.id)
    return MatchingResponse(
        success=True,
        message="Heartbeat recorded" if recorded else NOT_WORKING,
        data=WaiterStatusData(
            status=engine.registry.get_waiter_status(profile.id).value,
            roles=engine.registry.get_waiter_roles(profile.id),
        ),
    )


# ── Roles ──


@router.get("/roles", response_model=MatchingResponse)
async def list_matchable_roles(
    profile: Profile = Depends(current_profile),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    return MatchingResponse(success=True, message="Matchable roles", data=_roles_data(engine))


@router.post("/roles/refresh", response_model=MatchingResponse)
async def refresh_matchable_roles(
    profile: Profile = Depends(current_profile),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    """
    Reload the matchable role set after a role was created, updated or deleted.

    Raises:
        403: Caller lacks an admin permission
    """
    if not profile.has_any_permission(settings.MATCHING_ADMIN_PERMISSIONS):
        logger.warning("Non-admin attempted role refresh", profile_id=profile.id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin permission required")

    refreshed = await engine.role_directory.refresh_matchable_roles()
    return MatchingResponse(
        success=refreshed,
        message="Matchable roles refreshed" if refreshed else "Role refresh failed, kept previous set",
        data=_roles_data(engine),
    )
