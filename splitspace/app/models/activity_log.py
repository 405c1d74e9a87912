"""
Activity Log database model.

Durable copy of every outward LedgerEvent, queried by the admin activity trail.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from splitspace.app.core.clock import utcnow
from splitspace.app.db.session import Base


class ActivityLog(Base):
    """
    Activity log model.

    Events logged include:
    - TRANSFER_SENT / TRANSFER_RECEIVED / TOPUP_RECEIVED
    - ROOM_CREATED / ROOM_JOINED / ROOM_CONTRIBUTION / ROOM_UNLOCKED / ROOM_REFUNDED
    - PLAN_CREATED / PLAN_DEDUCTION / PLAN_DEDUCTION_FAILED / PLAN_PAUSED / ...
    - PIN_FAILED / PIN_LOCKED
    """
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Whose activity this is (None for system actions)
    user_id = Column(Integer, index=True, nullable=True)

    action = Column(String(100), nullable=False, index=True)

    # What was acted upon
    resource_type = Column(String(50), nullable=True)
    resource_id = Column(String(64), nullable=True)

    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<ActivityLog(id={self.id}, action='{self.action}', user_id={self.user_id})>"
