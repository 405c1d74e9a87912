"""
Money Rooms API Endpoints.

Pooled escrow: create, join by invite code, contribute, unlock, refund.
"""

from typing import List

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from splitspace.app.db.session import get_db
from splitspace.app.core.dependencies import get_current_user
from splitspace.app.core.guards import caller_role
from splitspace.app.core.money import ZERO
from splitspace.app.domain.rooms.room_service import RoomService
from splitspace.app.models.enums import UserRole
from splitspace.app.models.room import Room
from splitspace.app.schemas.room import (
    ContributionRequest,
    ContributionResponse,
    EvaluateResponse,
    JoinRoomResponse,
    RefundResponse,
    RoomCreate,
    RoomDetailResponse,
    RoomJoinRequest,
    RoomMemberResponse,
    RoomResponse,
    UnlockResponse,
)

router = APIRouter(prefix="/rooms", tags=["Money Rooms"])


@router.post("", response_model=RoomResponse)
async def create_room(
    request: RoomCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Create a room. The creator joins automatically."""
    return await RoomService.create_room(
        db,
        creator_id=current_user["user_id"],
        name=request.name,
        unlock_type=request.unlock_type,
        target_amount=request.target_amount,
        unlock_date=request.unlock_date,
        description=request.description,
    )


@router.post("/join", response_model=JoinRoomResponse)
async def join_room(
    request: RoomJoinRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Join a room by invite code. Joining twice is harmless."""
    room, joined = await RoomService.join_room(db, current_user["user_id"], request.invite_code)
    return JoinRoomResponse(room_id=room.id, joined=joined)


@router.get("", response_model=List[RoomResponse])
async def list_my_rooms(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Rooms the caller belongs to."""
    return await RoomService.list_rooms(db, current_user["user_id"])


@router.get("/{room_id}", response_model=RoomDetailResponse)
async def get_room(
    room_id: int = Path(..., description="Room ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Room detail with members and their confirmed contribution totals."""
    room, members, totals = await RoomService.get_room_detail(
        db, room_id, current_user["user_id"], is_admin=caller_role(current_user) == UserRole.ADMIN
    )
    return RoomDetailResponse(
        room=RoomResponse.model_validate(room),
        members=[
            RoomMemberResponse(
                user_id=m.user_id,
                joined_at=m.joined_at,
                total_contributed=totals.get(m.user_id, ZERO),
            )
            for m in members
        ],
    )


@router.post("/{room_id}/contributions", response_model=ContributionResponse)
async def contribute(
    request: ContributionRequest,
    room_id: int = Path(..., description="Room ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Pay into a room; the unlock condition is evaluated in the same step."""
    result = await RoomService.contribute(
        db, current_user["user_id"], room_id, request.amount, pin=request.pin
    )
    return ContributionResponse(**result.__dict__)


@router.post("/{room_id}/unlock", response_model=UnlockResponse)
async def unlock_room(
    room_id: int = Path(..., description="Room ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Release the pot to the creator (admin, or creator of a manual room)."""
    result = await RoomService.unlock_room(db, current_user["user_id"], caller_role(current_user), room_id)
    return UnlockResponse(
        room_id=result.room.id,
        status=result.room.status,
        unlocked_now=result.unlocked_now,
        released_amount=result.released_amount,
        transaction_id=result.transaction_id,
    )


@router.post("/{room_id}/refund", response_model=RefundResponse)
async def refund_room(
    room_id: int = Path(..., description="Room ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Return every confirmed contribution and archive the room."""
    result = await RoomService.refund_room(db, current_user["user_id"], caller_role(current_user), room_id)
    return RefundResponse(
        room_id=result.room.id,
        status=result.room.status,
        refunds={str(uid): amount for uid, amount in result.refunds.items()},
        transaction_ids=result.transaction_ids,
    )


@router.post("/{room_id}/evaluate", response_model=EvaluateResponse)
async def evaluate_room(
    room_id: int = Path(..., description="Room ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """On-demand unlock evaluation (target and date conditions). Members and admins only."""
    await RoomService.require_viewer(
        db, room_id, current_user["user_id"], is_admin=caller_role(current_user) == UserRole.ADMIN
    )
    unlocked = await RoomService.evaluate_room(db, room_id)
    room = await db.get(Room, room_id, populate_existing=True)
    return EvaluateResponse(room_id=room_id, unlocked=unlocked, status=room.status)
