"""
Money Room (escrow) database models.

Room holds pooled funds until its unlock condition is met. Invariant:
current_amount == sum of CONFIRMED contributions while the room is OPEN.
"""

from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Enum, Numeric, Text,
    UniqueConstraint, CheckConstraint,
)
from sqlalchemy.sql import func
from splitspace.app.core.clock import utcnow
from splitspace.app.db.session import Base
from splitspace.app.models.room_enums import RoomUnlockType, RoomStatus, ContributionStatus


class Room(Base):
    """
    Room model.

    Lifecycle: OPEN -> UNLOCKED (credited to creator) or OPEN -> ARCHIVED
    (refunded to contributors). Both terminal.
    """
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    creator_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)

    # Financials
    target_amount = Column(Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    current_amount = Column(Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    currency = Column(String(3), nullable=False, default="NGN")

    # Release condition
    unlock_type = Column(Enum(RoomUnlockType), nullable=False)
    unlock_date = Column(DateTime, nullable=True, index=True)

    status = Column(Enum(RoomStatus), default=RoomStatus.OPEN, nullable=False, index=True)

    # Invite
    invite_code = Column(String(16), unique=True, nullable=False, index=True)
    invite_expires_at = Column(DateTime, nullable=True)

    # Terminal transition bookkeeping
    unlocked_at = Column(DateTime, nullable=True)
    archived_at = Column(DateTime, nullable=True)
    released_amount = Column(Numeric(18, 2), nullable=True)

    created_at = Column(DateTime, default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint('current_amount >= 0', name='ck_rooms_current_non_negative'),
        CheckConstraint('target_amount >= 0', name='ck_rooms_target_non_negative'),
    )

    @property
    def is_open(self) -> bool:
        return self.status == RoomStatus.OPEN

    def __repr__(self):
        return f"<Room(id={self.id}, name='{self.name}', status='{self.status.value}', current={self.current_amount})>"


class RoomMember(Base):
    """Room membership. One row per (room, user)."""
    __tablename__ = "room_members"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    room_id = Column(Integer, ForeignKey('rooms.id'), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    joined_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('room_id', 'user_id', name='uq_room_members_room_user'),
    )

    def __repr__(self):
        return f"<RoomMember(room_id={self.room_id}, user_id={self.user_id})>"


class RoomContribution(Base):
    """
    One payment into a room.

    A user may have many rows per room; they are aggregated for display only.
    """
    __tablename__ = "room_contributions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    room_id = Column(Integer, ForeignKey('rooms.id'), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    amount = Column(Numeric(18, 2), nullable=False)
    status = Column(Enum(ContributionStatus), default=ContributionStatus.PENDING, nullable=False, index=True)

    # Ledger linkage
    transaction_id = Column(Integer, ForeignKey('ledger_entries.id'), nullable=True)
    refund_transaction_id = Column(Integer, ForeignKey('ledger_entries.id'), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    refunded_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<RoomContribution(id={self.id}, room_id={self.room_id}, user_id={self.user_id}, amount={self.amount}, status='{self.status.value}')>"
