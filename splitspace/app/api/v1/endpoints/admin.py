"""
Admin API Endpoints.

Admin-only account operations: verification tiers, transaction limits,
wallet deactivation and activity history.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from splitspace.app.db.session import get_db
from splitspace.app.core.guards import require_admin
from splitspace.app.domain.wallet.account_service import AccountService
from splitspace.app.models.enums import VerificationTier
from splitspace.app.schemas.admin import (
    ActivityLogResponse,
    LimitsRequest,
    LimitsResponse,
    SetTierRequest,
    UserTierResponse,
)
from splitspace.app.schemas.wallet import WalletResponse
from splitspace.app.services.activity import ActivityAction, get_user_activity
from splitspace.app.services.events import LedgerEvent, event_publisher
from splitspace.app.services.limits import LimitChecker

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.patch("/users/{user_id}/tier", response_model=UserTierResponse)
async def set_user_tier(
    user_id: int,
    request: SetTierRequest,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Move a user between verification tiers (admin-only).

    The new tier's limits apply from the user's next outgoing payment.
    """
    user = await AccountService.set_tier(db, user_id, request.tier, admin_id=admin["user_id"])
    return UserTierResponse(user_id=user.id, tier=user.tier)


@router.get("/limits/{tier}", response_model=LimitsResponse)
async def get_tier_limits(
    tier: VerificationTier,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    limits = await LimitChecker.get_tier_limits(db, tier)
    return LimitsResponse(
        tier=tier,
        daily_limit=limits.daily_limit,
        per_transaction_limit=limits.per_transaction_limit,
        min_transaction=limits.min_transaction,
    )


@router.put("/limits/{tier}", response_model=LimitsResponse)
async def update_tier_limits(
    tier: VerificationTier,
    request: LimitsRequest,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Replace a tier's limits (admin-only).

    Requires 0 < min_transaction <= per_transaction_limit <= daily_limit.
    """
    row = await LimitChecker.upsert_limits(
        db,
        tier,
        daily_limit=request.daily_limit,
        per_transaction_limit=request.per_transaction_limit,
        min_transaction=request.min_transaction,
        updated_by=admin["user_id"],
    )
    await event_publisher.emit(db, LedgerEvent(
        user_id=admin["user_id"],
        action=ActivityAction.LIMITS_UPDATED,
        resource_type="transaction_limit",
        resource_id=tier.value,
        metadata={
            "daily_limit": request.daily_limit,
            "per_transaction_limit": request.per_transaction_limit,
            "min_transaction": request.min_transaction,
        },
    ))
    return LimitsResponse.model_validate(row)


@router.post("/wallets/{user_id}/deactivate", response_model=WalletResponse)
async def deactivate_wallet(
    user_id: int,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Deactivate an empty wallet. The row and its history are kept."""
    return await AccountService.deactivate_wallet(db, user_id, admin_id=admin["user_id"])


@router.get("/users/{user_id}/activity", response_model=List[ActivityLogResponse])
async def get_user_activity_log(
    user_id: int,
    action: Optional[str] = Query(None, description="Filter by action, e.g. TRANSFER_SENT"),
    limit: int = Query(50, ge=1, le=200),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Activity history for a user, most recent first (admin-only)."""
    return await get_user_activity(db, user_id, action=action, limit=limit)
