"""
Money movement schemas (transfers and top-ups).
"""

from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional


class TransferRequest(BaseModel):
    """Schema for a peer-to-peer transfer."""
    to_user_id: int
    amount: Decimal
    description: Optional[str] = Field(None, max_length=255)
    pin: Optional[str] = None
    idempotency_key: Optional[str] = Field(None, max_length=100, description="Client retry token")


class TopupRequest(BaseModel):
    """Schema for an externally confirmed top-up."""
    user_id: int
    amount: Decimal
    reference: str = Field(..., min_length=1, max_length=100, description="Payment provider reference")
    description: Optional[str] = Field(None, max_length=255)


class MovementResponse(BaseModel):
    """Result of a transfer or top-up."""
    success: bool = True
    transaction_id: int
    reference: str
    new_balance: Decimal
    replayed: bool = False
