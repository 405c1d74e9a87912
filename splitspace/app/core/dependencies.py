"""
Authentication dependencies for FastAPI.

The caller's identity is asserted by the external auth provider's bearer JWT.
This engine only decodes it; it never issues production tokens.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from splitspace.app.core.jwt import decode_access_token
from splitspace.app.db.session import get_db
from splitspace.app.models.user import User

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_token_payload(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    Decode the bearer token without requiring a provisioned account.

    Used by account provisioning, where the user row does not exist yet.

    Raises:
        HTTPException: 401 if the token is invalid or carries no user_id
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not payload.get("user_id"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload


async def get_current_user(
    payload: dict = Depends(get_token_payload),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    FastAPI dependency for authenticated, provisioned callers.

    Checks:
    1. Valid JWT signature, expiry and user_id claim
    2. A user profile exists (account provisioned)
    3. The user is still active (real-time check)

    Returns:
        Decoded token payload (user_id, sub, role)

    Raises:
        HTTPException: 401 unknown user, 403 inactive user
    """
    result = await db.execute(select(User.is_active).where(User.id == payload["user_id"]))
    is_active = result.scalar_one_or_none()

    if is_active is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account not provisioned",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    return payload
