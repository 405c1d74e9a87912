"""
User roles and verification tiers.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Operations staff; may force room unlock/refund, manage limits
        SERVICE: Trusted collaborator (payment provider, scheduler)
        USER: Wallet holder (default role)
    """
    ADMIN = "ADMIN"
    SERVICE = "SERVICE"
    USER = "USER"


class VerificationTier(str, enum.Enum):
    """Tier used to pick transaction limits."""
    DEFAULT = "default"
    VERIFIED = "verified"
