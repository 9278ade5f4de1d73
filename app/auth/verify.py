"""
verify.py
---------
Purpose:
    JWT verification against the identity provider's JWKS.

Notes:
    - Signing keys are fetched from the issuer and cached by PyJWKClient.
    - `auth_dependency` protects HTTP routes (Authorization: Bearer <token>).
    - `current_profile` resolves the caller's platform profile.
    - `websocket_profile` does the same for WebSocket handshakes, where the
      token travels in the `token` query parameter.
"""

import jwt
from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient
from starlette.concurrency import run_in_threadpool

from app.config import settings
from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.profile_domain import Profile
from app.services.profile_service import get_profile_by_user_id

logger = get_logger(__name__)

_jwk_client = PyJWKClient(settings.jwks_url())
_security = HTTPBearer()


def verify_jwt(token: str) -> dict:
    try:
        signing_key = _jwk_client.get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=settings.AUTH_ALGORITHMS,
            audience=settings.AUTH_AUDIENCE,
            options={"verify_exp": True},
        )
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication token: {e}",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_security)) -> dict:
    token = credentials.credentials
    return verify_jwt(token)


async def current_profile(claims: dict = Depends(auth_dependency)) -> Profile:
    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    try:
        profile = await get_profile_by_user_id(user_id)
    except DatabaseError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Profile service unavailable",
        ) from e

    if not profile:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")

    return profile


async def websocket_profile(token: str | None = Query(None)) -> Profile | None:
    """Resolve the profile for a socket handshake; None means reject."""
    if not token:
        return None

    try:
        # JWKS fetch on a cache miss is blocking I/O
        claims = await run_in_threadpool(verify_jwt, token)
    except HTTPException as e:
        logger.info("WebSocket token rejected", error=e.detail)
        return None

    user_id = claims.get("sub")
    if not user_id:
        return None

    try:
        return await get_profile_by_user_id(user_id)
    except DatabaseError:
        logger.warning("WebSocket rejected, profile lookup failed", user_id=user_id)
        return None
