"""
Admin API Schema Definitions.

Pydantic schemas for admin and ops endpoints.
"""

from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Any, Dict
from splitspace.app.models.enums import VerificationTier
from splitspace.app.models.dlq import DLQStatus


class SetTierRequest(BaseModel):
    tier: VerificationTier


class UserTierResponse(BaseModel):
    user_id: int
    tier: VerificationTier


class LimitsRequest(BaseModel):
    """Schema for upserting a tier's limits."""
    daily_limit: Decimal
    per_transaction_limit: Decimal
    min_transaction: Decimal


class LimitsResponse(BaseModel):
    tier: VerificationTier
    daily_limit: Decimal
    per_transaction_limit: Decimal
    min_transaction: Decimal

    class Config:
        from_attributes = True


class ActivityLogResponse(BaseModel):
    """Schema for an activity log entry."""
    id: int
    user_id: Optional[int]
    action: str
    resource_type: Optional[str]
    resource_id: Optional[str]
    meta_data: Optional[Dict[str, Any]]
    timestamp: datetime

    class Config:
        from_attributes = True


class DeductionResultResponse(BaseModel):
    plan_id: int
    outcome: str
    amount: Decimal
    transaction_id: Optional[int] = None
    current_saved: Decimal
    next_deduction_date: Optional[datetime] = None


class SweepResponse(BaseModel):
    ran_at: datetime
    plans: List[DeductionResultResponse]
    rooms_unlocked: List[int]


class DLQItemResponse(BaseModel):
    id: int
    task_name: str
    error_message: str
    payload: Optional[Dict[str, Any]]
    status: DLQStatus
    retry_count: int
    created_at: datetime
    last_retry_at: Optional[datetime] = None

    class Config:
        from_attributes = True
