"""
HourGlass recurring plan schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional
from splitspace.app.models.plan_enums import Recurrence, PlanStatus


class PlanCreate(BaseModel):
    """Schema for creating a savings plan."""
    name: str = Field(..., min_length=1, max_length=100)
    target_amount: Decimal
    deduction_amount: Decimal
    recurrence: Recurrence
    end_date: datetime
    start_date: Optional[datetime] = None
    deduct_immediately: bool = True


class PlanResponse(BaseModel):
    """Schema for displaying a plan."""
    id: int
    user_id: int
    name: str
    target_amount: Decimal
    deduction_amount: Decimal
    current_saved: Decimal
    recurrence: Recurrence
    next_deduction_date: datetime
    end_date: datetime
    status: PlanStatus
    consecutive_failures: int
    last_deduction_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
