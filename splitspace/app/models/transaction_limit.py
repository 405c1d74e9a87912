"""
Per-tier transaction limits.

Read-only input for the limit checker; rows are upserted by admins.
"""

from sqlalchemy import Column, Integer, DateTime, Enum, Numeric
from sqlalchemy.sql import func
from splitspace.app.db.session import Base
from splitspace.app.models.enums import VerificationTier


class TransactionLimit(Base):
    __tablename__ = "transaction_limits"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tier = Column(Enum(VerificationTier), unique=True, nullable=False)

    daily_limit = Column(Numeric(18, 2), nullable=False)
    per_transaction_limit = Column(Numeric(18, 2), nullable=False)
    min_transaction = Column(Numeric(18, 2), nullable=False)

    updated_by = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<TransactionLimit(tier='{self.tier.value}', daily={self.daily_limit}, per_tx={self.per_transaction_limit})>"
