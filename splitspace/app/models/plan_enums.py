"""
HourGlass recurring plan enumerations.
"""

import enum


class Recurrence(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class PlanStatus(str, enum.Enum):
    """Plan status. COMPLETED and CANCELLED are terminal."""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
