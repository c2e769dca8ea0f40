"""
Authentication dependencies.

Tokens are issued by the platform's auth service; this module only
verifies them. Bearer JWTs carry the user id in "sub". Cron jobs and the
appointment workflow authenticate with the shared X-Internal-Key header
instead.
"""

import logging
import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from config import get_settings
from database import get_database

logger = logging.getLogger(__name__)

ADMIN_ROLE = "ADMIN"

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


# ============================================================
# JWT Token Verification
# ============================================================
async def _user_from_token(token: str) -> dict:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        user_id = payload.get("sub")
        if not user_id:
            raise HTTPException(status_code=401, detail="Invalid token")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    db = get_database()
    user = await db.users.find_one({"_id": user_id})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    return {
        "id": str(user["_id"]),
        "email": user.get("email"),
        "role": user.get("role", "PATIENT"),
    }


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    Dependency to get current authenticated user from JWT token.
    Raises HTTPException if token is invalid.
    """
    return await _user_from_token(credentials.credentials)


async def require_admin(current_user: dict = Depends(get_current_user)) -> dict:
    """Dependency that only lets ADMIN users through."""
    if current_user["role"] != ADMIN_ROLE:
        raise HTTPException(status_code=403, detail="Admin access required")
    return current_user


def _internal_key_matches(provided: Optional[str]) -> bool:
    expected = get_settings().internal_api_key
    if not expected or not provided:
        return False
    return secrets.compare_digest(provided, expected)


async def require_internal_key(
    x_internal_key: Optional[str] = Header(None),
) -> None:
    """Dependency for system endpoints driven by cron or other services."""
    if not _internal_key_matches(x_internal_key):
        logger.warning("Rejected system request with missing or invalid internal key")
        raise HTTPException(status_code=401, detail="Invalid internal API key")


async def require_admin_or_internal(
    x_internal_key: Optional[str] = Header(None),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
) -> Optional[dict]:
    """Either a valid internal key or an ADMIN bearer token.

    Returns:
        The admin user, or None when the internal key was used.
    """
    if _internal_key_matches(x_internal_key):
        return None
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = await _user_from_token(credentials.credentials)
    if user["role"] != ADMIN_ROLE:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
