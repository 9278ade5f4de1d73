from typing import Any

from pydantic import BaseModel, Field


class StartMatchingRequest(BaseModel):
    """Request body for POST /match/start."""

    role: str = Field(..., min_length=1, max_length=100)


class SetWorkingRequest(BaseModel):
    """Request body for POST /match/waiter/working."""

    roles: list[str] = Field(..., min_length=1)


class MatchingResponse(BaseModel):
    """Envelope shared by every /match endpoint."""

    success: bool
    message: str
    data: Any = None


class QueueStatusData(BaseModel):
    in_queue: bool
    requested_role: str | None = None


class WaiterStatusData(BaseModel):
    status: str
    roles: list[str]


class RolesData(BaseModel):
    roles: list[str]
    loaded_at: str | None = None
