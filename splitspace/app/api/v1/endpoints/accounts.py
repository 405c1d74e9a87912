"""
Account & Wallet API Endpoints.

Account provisioning, wallet view, transaction history and PIN management.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from splitspace.app.db.session import get_db
from splitspace.app.core.dependencies import get_current_user, get_token_payload
from splitspace.app.core.guards import caller_role
from splitspace.app.core.money import to_money
from splitspace.app.domain.wallet.account_service import AccountService
from splitspace.app.models.ledger_enums import LedgerEntryType
from splitspace.app.schemas.wallet import (
    AccountResponse,
    MessageResponse,
    PinCheckResponse,
    SetPinRequest,
    TransactionListResponse,
    TransactionResponse,
    VerifyPinRequest,
    WalletResponse,
)
from splitspace.app.services import ledger
from splitspace.app.services.pin_gate import PinGate

router = APIRouter(tags=["Accounts & Wallet"])


@router.post("/accounts", response_model=AccountResponse)
async def provision_account(
    payload: dict = Depends(get_token_payload),
    db: AsyncSession = Depends(get_db)
):
    """
    Create the caller's profile and zero-balance wallet from token claims.

    Calling again returns the existing account (created=false).
    """
    result = await AccountService.create_account(
        db,
        user_id=payload["user_id"],
        username=payload.get("sub") or f"user{payload['user_id']}",
        role=caller_role(payload),
    )
    return AccountResponse(
        user_id=result.user.id,
        username=result.user.username,
        role=result.user.role,
        tier=result.user.tier,
        has_pin=result.user.has_pin,
        created=result.created,
        wallet=WalletResponse.model_validate(result.wallet),
    )


@router.get("/wallet/me", response_model=WalletResponse)
async def get_my_wallet(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get the caller's wallet."""
    return await ledger.get_wallet(db, current_user["user_id"])


@router.get("/wallet/me/transactions", response_model=TransactionListResponse)
async def list_my_transactions(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    entry_type: Optional[LedgerEntryType] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Transaction history, newest first."""
    wallet = await ledger.get_wallet(db, current_user["user_id"])
    entries = await ledger.list_wallet_entries(db, wallet.id, limit=limit, offset=offset, entry_type=entry_type)

    transactions = []
    for entry in entries:
        debit = entry.from_wallet_id == wallet.id
        balance_after = entry.from_balance_after if debit else entry.to_balance_after
        transactions.append(TransactionResponse(
            id=entry.id,
            entry_type=entry.entry_type,
            status=entry.status,
            amount=to_money(entry.amount),
            currency=entry.currency,
            direction="debit" if debit else "credit",
            reference=entry.reference,
            description=entry.description,
            failure_reason=entry.failure_reason,
            room_id=entry.room_id,
            plan_id=entry.plan_id,
            balance_after=to_money(balance_after) if balance_after is not None else None,
            created_at=entry.created_at,
            completed_at=entry.completed_at,
            failed_at=entry.failed_at,
        ))
    return TransactionListResponse(transactions=transactions, limit=limit, offset=offset)


@router.post("/wallet/pin", response_model=MessageResponse)
async def set_pin(
    request: SetPinRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Set up or change the transaction PIN."""
    await PinGate.set_pin(db, current_user["user_id"], request.pin, current_pin=request.current_pin)
    return MessageResponse(message="PIN updated")


@router.post("/wallet/pin/verify", response_model=PinCheckResponse)
async def verify_pin(
    request: VerifyPinRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Check a PIN without moving money.

    Wrong PINs count towards the lockout like any other check.
    """
    result = await PinGate.check_pin(db, current_user["user_id"], request.pin)
    return PinCheckResponse(
        success=result.success,
        attempts_remaining=result.attempts_remaining,
        locked_until=result.locked_until,
    )
