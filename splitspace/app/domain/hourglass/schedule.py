"""
HourGlass schedule arithmetic.

Dates are computed from a fixed anchor, never by repeatedly adding to the
previous date, so month-end anchors do not drift:

    anchor 2026-01-31, monthly -> 02-28, 03-31, 04-30, 05-31, ...
"""

from datetime import datetime

from dateutil.relativedelta import relativedelta

from splitspace.app.models.plan_enums import Recurrence


def recurrence_step(recurrence: Recurrence, cycles: int = 1) -> relativedelta:
    if recurrence == Recurrence.DAILY:
        return relativedelta(days=cycles)
    if recurrence == Recurrence.WEEKLY:
        return relativedelta(weeks=cycles)
    if recurrence == Recurrence.MONTHLY:
        return relativedelta(months=cycles)
    raise ValueError(f"Unknown recurrence: {recurrence}")


def deduction_date(anchor: datetime, recurrence: Recurrence, cycle_index: int) -> datetime:
    """Scheduled date of the n-th cycle after the anchor."""
    return anchor + recurrence_step(recurrence, cycle_index)
