"""
Money Room schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from splitspace.app.models.room_enums import RoomUnlockType, RoomStatus


class RoomCreate(BaseModel):
    """Schema for creating a room."""
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    unlock_type: RoomUnlockType
    target_amount: Optional[Decimal] = None
    unlock_date: Optional[datetime] = None


class RoomJoinRequest(BaseModel):
    invite_code: str = Field(..., min_length=1, max_length=16)


class ContributionRequest(BaseModel):
    amount: Decimal
    pin: Optional[str] = None


class RoomResponse(BaseModel):
    """Schema for displaying a room."""
    id: int
    creator_id: int
    name: str
    description: Optional[str] = None
    target_amount: Decimal
    current_amount: Decimal
    currency: str
    unlock_type: RoomUnlockType
    unlock_date: Optional[datetime] = None
    status: RoomStatus
    invite_code: str
    invite_expires_at: Optional[datetime] = None
    unlocked_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    released_amount: Optional[Decimal] = None
    created_at: datetime

    class Config:
        from_attributes = True


class RoomMemberResponse(BaseModel):
    user_id: int
    joined_at: datetime
    total_contributed: Decimal


class RoomDetailResponse(BaseModel):
    room: RoomResponse
    members: List[RoomMemberResponse]


class JoinRoomResponse(BaseModel):
    success: bool = True
    room_id: int
    joined: bool


class ContributionResponse(BaseModel):
    success: bool = True
    contribution_id: int
    transaction_id: int
    reference: str
    new_room_amount: Decimal
    new_balance: Decimal
    unlocked: bool
    unlock_transaction_id: Optional[int] = None


class UnlockResponse(BaseModel):
    success: bool = True
    room_id: int
    status: RoomStatus
    unlocked_now: bool
    released_amount: Decimal
    transaction_id: Optional[int] = None


class RefundResponse(BaseModel):
    success: bool = True
    room_id: int
    status: RoomStatus
    refunds: dict  # user_id -> amount
    transaction_ids: List[int]


class EvaluateResponse(BaseModel):
    room_id: int
    unlocked: bool
    status: RoomStatus
