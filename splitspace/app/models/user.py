"""
User profile database model.

Identity lives with the external auth provider; this row holds only what the
ledger engine needs: role, verification tier and PIN lockout state.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum
from sqlalchemy.sql import func
from splitspace.app.db.session import Base
from splitspace.app.models.enums import UserRole, VerificationTier


class User(Base):
    """
    User profile.

    `id` is the user id asserted by the auth provider's token.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=False)
    username = Column(String(100), unique=True, index=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    role = Column(Enum(UserRole), default=UserRole.USER, nullable=False)
    tier = Column(Enum(VerificationTier), default=VerificationTier.DEFAULT, nullable=False)

    # PIN (never the PIN itself)
    pin_hash = Column(String(128), nullable=True)
    pin_salt = Column(String(64), nullable=True)
    pin_updated_at = Column(DateTime, nullable=True)

    # Lockout state
    failed_pin_attempts = Column(Integer, default=0, nullable=False)
    pin_locked_until = Column(DateTime, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def has_pin(self) -> bool:
        return bool(self.pin_hash and self.pin_salt)

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', tier='{self.tier.value}')>"
