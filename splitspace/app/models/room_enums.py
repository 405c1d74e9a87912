"""
Money Room enumerations.
"""

import enum


class RoomUnlockType(str, enum.Enum):
    """
    Release condition for a room's pooled funds.

    TARGET_AND_DATE is the "both" option: the target must be met AND the
    unlock date must have passed.
    """
    TARGET_REACHED = "target_reached"
    DATE_REACHED = "date_reached"
    TARGET_AND_DATE = "target_and_date"
    MANUAL = "manual"

    @property
    def needs_target(self) -> bool:
        return self in (RoomUnlockType.TARGET_REACHED, RoomUnlockType.TARGET_AND_DATE)

    @property
    def needs_date(self) -> bool:
        return self in (RoomUnlockType.DATE_REACHED, RoomUnlockType.TARGET_AND_DATE)


class RoomStatus(str, enum.Enum):
    """Room status. UNLOCKED and ARCHIVED are terminal."""
    OPEN = "open"
    UNLOCKED = "unlocked"  # Funds released to creator
    ARCHIVED = "archived"  # Funds refunded to contributors


class ContributionStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REFUNDED = "refunded"
