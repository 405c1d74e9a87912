"""
Activity logging service.

Durable, queryable trail of ledger events per user. Rows are written by
EventPublisher after the financial commit; they never gate a money movement.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from splitspace.app.models.activity_log import ActivityLog


class ActivityAction:
    """Standardized activity action constants."""
    # Accounts
    ACCOUNT_CREATED = "ACCOUNT_CREATED"
    WALLET_DEACTIVATED = "WALLET_DEACTIVATED"
    TIER_CHANGED = "TIER_CHANGED"
    LIMITS_UPDATED = "LIMITS_UPDATED"

    # Money movement
    TOPUP_RECEIVED = "TOPUP_RECEIVED"
    TRANSFER_SENT = "TRANSFER_SENT"
    TRANSFER_RECEIVED = "TRANSFER_RECEIVED"

    # Money Rooms
    ROOM_CREATED = "ROOM_CREATED"
    ROOM_JOINED = "ROOM_JOINED"
    ROOM_CONTRIBUTION = "ROOM_CONTRIBUTION"
    ROOM_UNLOCKED = "ROOM_UNLOCKED"
    ROOM_REFUNDED = "ROOM_REFUNDED"

    # HourGlass
    PLAN_CREATED = "PLAN_CREATED"
    PLAN_DEDUCTION = "PLAN_DEDUCTION"
    PLAN_DEDUCTION_FAILED = "PLAN_DEDUCTION_FAILED"
    PLAN_PAUSED = "PLAN_PAUSED"
    PLAN_RESUMED = "PLAN_RESUMED"
    PLAN_CANCELLED = "PLAN_CANCELLED"
    PLAN_COMPLETED = "PLAN_COMPLETED"

    # PIN
    PIN_SET = "PIN_SET"
    PIN_CHANGED = "PIN_CHANGED"
    PIN_FAILED = "PIN_FAILED"
    PIN_LOCKED = "PIN_LOCKED"


def build_activity(
    action: str,
    user_id: Optional[int] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[Any] = None,
    metadata: Optional[Dict[str, Any]] = None,
    timestamp=None,
) -> ActivityLog:
    """Build (but do not add) an ActivityLog row."""
    row = ActivityLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        meta_data=metadata,
    )
    if timestamp is not None:
        row.timestamp = timestamp
    return row


async def get_user_activity(
    db: AsyncSession,
    user_id: int,
    action: Optional[str] = None,
    limit: int = 50
) -> list[ActivityLog]:
    """
    Get the activity history for a user, most recent first.

    Args:
        db: Database session
        user_id: User ID to get history for
        action: Optional action filter (use ActivityAction constants)
        limit: Maximum number of records

    Returns:
        List of ActivityLog rows
    """
    query = select(ActivityLog).where(ActivityLog.user_id == user_id)
    if action:
        query = query.where(ActivityLog.action == action)
    query = query.order_by(desc(ActivityLog.timestamp), desc(ActivityLog.id)).limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
