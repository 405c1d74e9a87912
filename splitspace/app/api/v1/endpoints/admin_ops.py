"""
Admin Operations API Endpoints.

Scheduler sweep trigger and dead-letter queue management.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from splitspace.app.db.session import get_db
from splitspace.app.core.clock import utcnow
from splitspace.app.core.guards import require_role
from splitspace.app.domain.hourglass.plan_service import RecurringPlanService
from splitspace.app.domain.rooms.room_service import RoomService
from splitspace.app.models.dlq import DeadLetterQueue, DLQStatus
from splitspace.app.models.enums import UserRole
from splitspace.app.schemas.admin import DeductionResultResponse, DLQItemResponse, SweepResponse
from splitspace.app.services.events import event_publisher

router = APIRouter(prefix="/admin/ops", tags=["Admin - Ops"])


@router.post("/sweep", response_model=SweepResponse)
async def run_sweep(
    current_user: dict = Depends(require_role([UserRole.ADMIN, UserRole.SERVICE])),
    db: AsyncSession = Depends(get_db)
):
    """
    Run one scheduler tick: due HourGlass deductions, then date-based room unlocks.

    Always evaluated at server time. Safe to call repeatedly; a cycle that
    already ran is skipped.
    """
    now = utcnow()
    plans = await RecurringPlanService.process_due(db, now)
    rooms = await RoomService.process_due_rooms(db, now)
    return SweepResponse(
        ran_at=now,
        plans=[DeductionResultResponse(**r.__dict__) for r in plans],
        rooms_unlocked=rooms,
    )


@router.get("/dlq", response_model=List[DLQItemResponse])
async def list_dlq_items(
    status: Optional[DLQStatus] = Query(DLQStatus.FAILED),
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """List parked events, oldest first."""
    query = select(DeadLetterQueue)
    if status:
        query = query.where(DeadLetterQueue.status == status)
    result = await db.execute(query.order_by(DeadLetterQueue.id).limit(limit))
    return result.scalars().all()


@router.post("/dlq/{dlq_id}/retry", response_model=DLQItemResponse)
async def retry_dlq_item(
    dlq_id: int = Path(..., description="DLQ Item ID"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """Republish a parked event to the stream."""
    return await event_publisher.retry_dead_letter(db, dlq_id)
