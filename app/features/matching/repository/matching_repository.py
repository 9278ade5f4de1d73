"""
Persistence layer for the matching engine.

Three statements cover everything the engine writes or reads: the matchable
role names, the profile matching flags (write-through mirror of the
in-memory registry), and the chat room created for a successful match.
"""

from app.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one, with_db_retry
from app.features.matching.domain import ChatRoomRecord
from app.features.matching.domain.models import (
    ROOM_STATUS_ACTIVE,
    SUPPORT_ROOM_NAME,
    SUPPORT_ROOM_TYPE,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class MatchingRepositoryError(DatabaseError):
    """More specific exception for repository failures."""


class MatchingRepository:
    """Postgres-backed storage used by the matching engine."""

    ROOM_SELECT_COLUMNS = "id, participant_ids, type, owner_id, status, created_at"

    @classmethod
    def _row_to_room(cls, row: dict) -> ChatRoomRecord:
        return ChatRoomRecord(
            id=str(row["id"]),
            participant_ids=[str(p) for p in row["participant_ids"]],
            type=row["type"],
            owner_id=str(row["owner_id"]),
            status=row["status"],
            created_at=row.get("created_at"),
        )

    async def list_matchable_role_names(self) -> list[str]:
        """Names of every role flagged as matchable."""
        rows = await fetch_all("SELECT name FROM role WHERE is_matchable = true ORDER BY name")
        return [row["name"] for row in rows]

    @with_db_retry(max_retries=2, base_delay=0.05)
    async def update_matching_flags(
        self,
        profile_id: str,
        is_matching: bool,
        matching_roles: list[str] | None = None,
    ) -> None:
        """
        Mirror the in-memory state onto the profile row.

        matching_roles=None leaves the stored role list untouched.
        """
        if matching_roles is None:
            query = """
                UPDATE profile
                SET is_matching = %s,
                    updated_at = NOW()
                WHERE id = %s
            """
            params = (is_matching, profile_id)
        else:
            query = """
                UPDATE profile
                SET is_matching = %s,
                    matching_roles = %s,
                    updated_at = NOW()
                WHERE id = %s
            """
            params = (is_matching, list(matching_roles), profile_id)

        updated = await execute_query(query, params)
        if updated == 0:
            logger.warning("Matching flags update hit no profile", profile_id=profile_id)

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def create_support_room(self, user_id: str, waiter_id: str) -> ChatRoomRecord:
        """Insert the private support room for a match, owned by the user."""
        query = f"""
            INSERT INTO chatting_room (name, participant_ids, type, owner_id, status)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING {self.ROOM_SELECT_COLUMNS}
        """

        row = await fetch_one(
            query,
            (SUPPORT_ROOM_NAME, [user_id, waiter_id], SUPPORT_ROOM_TYPE, user_id, ROOM_STATUS_ACTIVE),
        )
        if not row:
            raise MatchingRepositoryError(
                "Chat room insert returned no row",
                operation="create_support_room",
                recoverable=False,
            )

        return self._row_to_room(row)
