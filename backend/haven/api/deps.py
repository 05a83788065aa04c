"""
Haven - API Dependencies
========================

Shared dependencies for FastAPI endpoints.

Bearer tokens are issued by the platform auth service; here we only verify
them and read the user id from `sub`.
"""

import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from haven.core.config import settings
from haven.core.database import get_db, get_session_factory
from haven.core.models import Couple


# ==========================================================================
# Security
# ==========================================================================

security = HTTPBearer(auto_error=False)


# ==========================================================================
# Token Utilities
# ==========================================================================

def create_access_token(
    user_id: UUID,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create an access token in the format the auth service issues.

    Used by tests and ops tooling.
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "exp": now + expires_delta,
        "iat": now,
        "type": "access",
        "jti": secrets.token_hex(16),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT token.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


# ==========================================================================
# User Dependencies
# ==========================================================================

async def get_current_user_id(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> UUID:
    """
    Get the authenticated user's id from the bearer token.

    Raises:
        HTTPException: If not authenticated or the token is malformed
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")

    payload = decode_token(credentials.credentials)

    if payload.get("type") != "access":
        raise _unauthorized("Invalid token type")

    user_id_str = payload.get("sub")
    if user_id_str is None:
        raise _unauthorized("Invalid token payload")

    try:
        return UUID(user_id_str)
    except ValueError as e:
        raise _unauthorized("Invalid user ID in token") from e


async def get_couple_for_member(
    couple_id: UUID,
    user_id: UUID,
    db: AsyncSession,
) -> Couple:
    """
    Load a couple the user belongs to.

    Raises:
        HTTPException: 404 if the couple does not exist, 403 if the user is
            not one of its partners
    """
    couple = await db.get(Couple, couple_id)
    if couple is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Couple not found",
        )
    if not couple.has_partner(user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a member of this couple",
        )
    return couple


# ==========================================================================
# Service Dependencies
# ==========================================================================

async def require_service_key(
    x_service_key: Annotated[Optional[str], Header()] = None,
) -> None:
    """
    Guard internal endpoints with the shared service key.

    Disabled (always 403) when SERVICE_API_KEY is unset.
    """
    expected = settings.SERVICE_API_KEY
    if not expected or not x_service_key or not hmac.compare_digest(x_service_key, expected):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid service key",
        )


# ==========================================================================
# Type Aliases for Dependency Injection
# ==========================================================================

CurrentUserId = Annotated[UUID, Depends(get_current_user_id)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
ServiceKey = Depends(require_service_key)
