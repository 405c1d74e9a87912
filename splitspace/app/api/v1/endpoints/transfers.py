"""
Money Movement API Endpoints.

Peer-to-peer transfers and externally confirmed top-ups.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from splitspace.app.db.session import get_db
from splitspace.app.core.dependencies import get_current_user
from splitspace.app.core.guards import require_role
from splitspace.app.domain.transfers.transfer_service import TransferService
from splitspace.app.domain.wallet.account_service import AccountService
from splitspace.app.models.enums import UserRole
from splitspace.app.schemas.transfer import MovementResponse, TopupRequest, TransferRequest

router = APIRouter(tags=["Money Movement"])


@router.post("/transfers", response_model=MovementResponse)
async def create_transfer(
    request: TransferRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Transfer funds to another user.

    Retrying with the same idempotency_key returns the original result
    (replayed=true) without moving money again.
    """
    result = await TransferService.transfer(
        db,
        from_user_id=current_user["user_id"],
        to_user_id=request.to_user_id,
        amount=request.amount,
        description=request.description,
        pin=request.pin,
        idempotency_key=request.idempotency_key,
    )
    return MovementResponse(
        transaction_id=result.transaction_id,
        reference=result.reference,
        new_balance=result.new_balance,
        replayed=result.replayed,
    )


@router.post("/internal/topups", response_model=MovementResponse)
async def create_topup(
    request: TopupRequest,
    current_user: dict = Depends(require_role([UserRole.SERVICE, UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Credit externally confirmed funds (payment collaborator only).

    Idempotent by the provider reference.
    """
    result = await AccountService.topup(
        db,
        user_id=request.user_id,
        amount=request.amount,
        reference=request.reference,
        description=request.description,
    )
    return MovementResponse(
        transaction_id=result.transaction_id,
        reference=result.reference,
        new_balance=result.new_balance,
        replayed=result.replayed,
    )
