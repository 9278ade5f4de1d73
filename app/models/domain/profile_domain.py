from collections.abc import Iterable
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class Profile(BaseModel):
    """A platform profile as stored in the profile table."""

    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    username: str
    permission: list[str] = Field(default_factory=lambda: ["user"])

    # Durable shadow of the in-memory matching state, read back on reconnect
    is_matching: bool = False
    matching_roles: list[str] = Field(default_factory=list)

    created_at: datetime | None = None
    updated_at: datetime | None = None

    def has_any_permission(self, names: Iterable[str]) -> bool:
        return bool(set(self.permission) & set(names))
