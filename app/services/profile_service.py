"""
Profile lookups for authenticated requests.
Maps the identity provider's user id onto the platform profile row.
"""

from app.db.helpers import DatabaseError, fetch_one, with_db_retry
from app.infrastructure.observability.logging import get_logger
from app.models.domain.profile_domain import Profile

logger = get_logger(__name__)

PROFILE_COLUMNS = """
    id, user_id, username, permission,
    is_matching, matching_roles, created_at, updated_at
"""


def _row_to_profile(row: dict) -> Profile:
    return Profile(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        username=row["username"],
        permission=list(row.get("permission") or ["user"]),
        is_matching=bool(row.get("is_matching")),
        matching_roles=list(row.get("matching_roles") or []),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


@with_db_retry(max_retries=2, base_delay=0.1)
async def _fetch_profile_row(user_id: str) -> dict | None:
    query = f"SELECT {PROFILE_COLUMNS} FROM profile WHERE user_id = %s"
    return await fetch_one(query, (user_id,))


async def get_profile_by_user_id(user_id: str) -> Profile | None:
    """
    Fetch the profile owned by an authenticated user.

    Args:
        user_id: Subject claim from the verified token

    Returns:
        Profile, or None if the user has no profile

    Raises:
        DatabaseError: if the lookup failed after retries
    """
    try:
        row = await _fetch_profile_row(user_id)
    except DatabaseError as e:
        logger.error("Database error retrieving profile", user_id=user_id, error=str(e))
        raise

    if not row:
        logger.info("Profile not found", user_id=user_id)
        return None

    return _row_to_profile(row)
