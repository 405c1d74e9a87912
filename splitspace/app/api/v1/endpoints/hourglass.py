"""
HourGlass API Endpoints.

Recurring savings plans owned by the caller.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from splitspace.app.db.session import get_db
from splitspace.app.core.dependencies import get_current_user
from splitspace.app.domain.hourglass.plan_service import RecurringPlanService
from splitspace.app.models.plan_enums import PlanStatus
from splitspace.app.schemas.hourglass import PlanCreate, PlanResponse

router = APIRouter(prefix="/hourglass/plans", tags=["HourGlass"])


@router.post("", response_model=PlanResponse)
async def create_plan(
    request: PlanCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Create a plan; by default the first amount is saved immediately."""
    return await RecurringPlanService.create_plan(
        db,
        user_id=current_user["user_id"],
        name=request.name,
        target_amount=request.target_amount,
        deduction_amount=request.deduction_amount,
        recurrence=request.recurrence,
        end_date=request.end_date,
        start_date=request.start_date,
        deduct_immediately=request.deduct_immediately,
    )


@router.get("", response_model=List[PlanResponse])
async def list_plans(
    status: Optional[PlanStatus] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await RecurringPlanService.list_plans(db, current_user["user_id"], status=status)


@router.post("/{plan_id}/pause", response_model=PlanResponse)
async def pause_plan(
    plan_id: int = Path(..., description="Plan ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await RecurringPlanService.pause_plan(db, current_user["user_id"], plan_id)


@router.post("/{plan_id}/resume", response_model=PlanResponse)
async def resume_plan(
    plan_id: int = Path(..., description="Plan ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Resume; the next deduction is one recurrence unit from now."""
    return await RecurringPlanService.resume_plan(db, current_user["user_id"], plan_id)


@router.post("/{plan_id}/cancel", response_model=PlanResponse)
async def cancel_plan(
    plan_id: int = Path(..., description="Plan ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Cancel and refund everything saved so far."""
    return await RecurringPlanService.cancel_plan(db, current_user["user_id"], plan_id)
