"""
Wallet, account and PIN schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from splitspace.app.models.enums import UserRole, VerificationTier
from splitspace.app.models.ledger_enums import LedgerEntryType, LedgerEntryStatus


class WalletResponse(BaseModel):
    """Schema for displaying a wallet."""
    id: int
    user_id: int
    balance: Decimal
    pending_balance: Decimal
    currency: str
    virtual_account_number: Optional[str] = None
    virtual_account_bank: Optional[str] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class AccountResponse(BaseModel):
    """Schema for account provisioning response."""
    user_id: int
    username: str
    role: UserRole
    tier: VerificationTier
    has_pin: bool
    created: bool
    wallet: WalletResponse


class TransactionResponse(BaseModel):
    """Schema for a ledger entry in history."""
    id: int
    entry_type: LedgerEntryType
    status: LedgerEntryStatus
    amount: Decimal
    currency: str
    direction: str  # "debit" | "credit" from the caller's wallet
    reference: str
    description: Optional[str] = None
    failure_reason: Optional[str] = None
    room_id: Optional[int] = None
    plan_id: Optional[int] = None
    balance_after: Optional[Decimal] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None


class TransactionListResponse(BaseModel):
    transactions: List[TransactionResponse]
    limit: int
    offset: int


class SetPinRequest(BaseModel):
    """Schema for setting or changing the transaction PIN."""
    pin: str = Field(..., description="New 4-6 digit PIN")
    current_pin: Optional[str] = Field(None, description="Required when changing an existing PIN")


class VerifyPinRequest(BaseModel):
    pin: str


class PinCheckResponse(BaseModel):
    success: bool
    attempts_remaining: Optional[int] = None
    locked_until: Optional[datetime] = None


class MessageResponse(BaseModel):
    success: bool = True
    message: str
