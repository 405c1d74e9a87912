"""
Security guards for role-based access control.
"""

from typing import List
from fastapi import Depends, HTTPException, status
from splitspace.app.models.enums import UserRole
from splitspace.app.core.dependencies import get_current_user


def caller_role(current_user: dict) -> UserRole:
    """Role claim as a UserRole; unknown or missing claims fall back to USER."""
    try:
        return UserRole(current_user.get("role") or UserRole.USER.value)
    except ValueError:
        return UserRole.USER


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/internal/topups")
        async def topup(current_user: dict = Depends(require_role([UserRole.SERVICE, UserRole.ADMIN]))):
            ...

    Args:
        allowed_roles: List of UserRole enums that are allowed to access the endpoint

    Returns:
        FastAPI dependency function that validates user role

    Raises:
        HTTPException 403 if user role is not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        user_role_str = current_user.get("role")

        if not user_role_str:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Role information missing from token"
            )

        try:
            user_role = UserRole(user_role_str)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid role in token"
            )

        if user_role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return current_user

    return role_checker


require_admin = require_role([UserRole.ADMIN])
