"""
Room unlock rules.

Pure functions: no I/O, no session. What counts depends on the trigger:

    trigger        target_reached   date_reached   target_and_date   manual
    contribution   target met       never          target and date   never
    sweep          target met       date passed    target and date   never
"""

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from splitspace.app.core.exceptions import LedgerValidationError
from splitspace.app.core.money import ZERO
from splitspace.app.models.room_enums import RoomUnlockType


class UnlockTrigger(str, enum.Enum):
    CONTRIBUTION = "contribution"
    SWEEP = "sweep"


def target_met(current_amount: Decimal, target_amount: Decimal) -> bool:
    return target_amount > ZERO and current_amount >= target_amount


def date_passed(unlock_date: Optional[datetime], now: datetime) -> bool:
    return unlock_date is not None and now >= unlock_date


def should_unlock(
    unlock_type: RoomUnlockType,
    current_amount: Decimal,
    target_amount: Decimal,
    unlock_date: Optional[datetime],
    now: datetime,
    trigger: UnlockTrigger,
) -> bool:
    if unlock_type == RoomUnlockType.MANUAL:
        return False
    if unlock_type == RoomUnlockType.TARGET_REACHED:
        return target_met(current_amount, target_amount)
    if unlock_type == RoomUnlockType.TARGET_AND_DATE:
        return target_met(current_amount, target_amount) and date_passed(unlock_date, now)
    if unlock_type == RoomUnlockType.DATE_REACHED:
        # A contribution never releases a strictly date-based room
        return trigger == UnlockTrigger.SWEEP and date_passed(unlock_date, now)
    return False


def validate_room_terms(
    unlock_type: RoomUnlockType,
    target_amount: Decimal,
    unlock_date: Optional[datetime],
    now: datetime,
) -> None:
    """
    Raises:
        LedgerValidationError: target missing for a target-based room, or
            unlock date missing / not strictly in the future for a date-based room
    """
    if unlock_type.needs_target and target_amount <= ZERO:
        raise LedgerValidationError("Target amount must be greater than zero for this unlock type")
    if unlock_type.needs_date:
        if unlock_date is None:
            raise LedgerValidationError("Unlock date is required for this unlock type")
        if unlock_date <= now:
            raise LedgerValidationError("Unlock date must be in the future")
    elif unlock_date is not None and unlock_date <= now:
        raise LedgerValidationError("Unlock date must be in the future")
