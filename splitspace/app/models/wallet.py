"""
Wallet (account) database model.

One per user. Balance is mutated only through services.ledger.apply_entry.
"""

from decimal import Decimal
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Numeric, CheckConstraint
from sqlalchemy.sql import func
from splitspace.app.db.session import Base


class Wallet(Base):
    """
    Wallet model.

    Never deleted, only deactivated (and only at zero balance).
    """
    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id'), unique=True, nullable=False, index=True)

    balance = Column(Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    pending_balance = Column(Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    currency = Column(String(3), nullable=False, default="NGN")

    # Opaque external routing info
    virtual_account_number = Column(String(20), unique=True, nullable=True)
    virtual_account_bank = Column(String(100), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    deactivated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint('balance >= 0', name='ck_wallets_balance_non_negative'),
        CheckConstraint('pending_balance >= 0', name='ck_wallets_pending_non_negative'),
    )

    def __repr__(self):
        return f"<Wallet(id={self.id}, user_id={self.user_id}, balance={self.balance})>"
