"""
HourGlass recurring plan database model.

Fixed-amount deductions from the owner's wallet into a savings sub-ledger
(current_saved), on an anchored schedule:

    next_deduction_date = schedule_anchor + cycle_index * recurrence unit
"""

from decimal import Decimal
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum, Numeric, CheckConstraint
from sqlalchemy.sql import func
from splitspace.app.core.clock import utcnow
from splitspace.app.db.session import Base
from splitspace.app.models.plan_enums import Recurrence, PlanStatus


class RecurringPlan(Base):
    """
    RecurringPlan model.

    current_saved only grows through successful deductions, and only drops
    (to zero) through a cancellation refund.
    """
    __tablename__ = "recurring_plans"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    name = Column(String(100), nullable=False)

    # Financials
    target_amount = Column(Numeric(18, 2), nullable=False)
    deduction_amount = Column(Numeric(18, 2), nullable=False)
    current_saved = Column(Numeric(18, 2), nullable=False, default=Decimal("0.00"))

    # Schedule
    recurrence = Column(Enum(Recurrence), nullable=False)
    schedule_anchor = Column(DateTime, nullable=False)
    cycle_index = Column(Integer, nullable=False, default=1)
    next_deduction_date = Column(DateTime, nullable=False, index=True)
    end_date = Column(DateTime, nullable=False)

    status = Column(Enum(PlanStatus), default=PlanStatus.ACTIVE, nullable=False, index=True)

    # Failure policy
    consecutive_failures = Column(Integer, nullable=False, default=0)
    last_failed_at = Column(DateTime, nullable=True)
    last_deduction_at = Column(DateTime, nullable=True)

    paused_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint('current_saved >= 0', name='ck_recurring_plans_saved_non_negative'),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (PlanStatus.COMPLETED, PlanStatus.CANCELLED)

    def __repr__(self):
        return f"<RecurringPlan(id={self.id}, user_id={self.user_id}, status='{self.status.value}', saved={self.current_saved})>"
