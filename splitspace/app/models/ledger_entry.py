"""
Ledger Entry database model.

Append-only record of every balance-affecting event. The only permitted
mutation is the single PENDING -> COMPLETED | FAILED transition; after that
the row is frozen.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, String, Numeric, event, inspect
from sqlalchemy.sql import func
from splitspace.app.core.clock import utcnow
from splitspace.app.core.exceptions import InternalLedgerError
from splitspace.app.db.session import Base
from splitspace.app.models.ledger_enums import LedgerEntryType, LedgerEntryStatus


class LedgerEntry(Base):
    """
    Ledger Entry model.

    Modeled as a pair of wallets + unsigned amount. `from_wallet_id` is NULL for
    funds entering from outside (top-up) or from an escrow (room unlock/refund,
    plan refund); `to_wallet_id` is NULL for funds moving into an escrow.
    NO deletions allowed.
    """
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    entry_type = Column(Enum(LedgerEntryType), nullable=False, index=True)
    status = Column(Enum(LedgerEntryStatus), default=LedgerEntryStatus.PENDING, nullable=False, index=True)

    # Parties
    from_wallet_id = Column(Integer, ForeignKey('wallets.id'), nullable=True, index=True)
    to_wallet_id = Column(Integer, ForeignKey('wallets.id'), nullable=True, index=True)

    # Financials
    amount = Column(Numeric(18, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="NGN")
    from_balance_after = Column(Numeric(18, 2), nullable=True)
    to_balance_after = Column(Numeric(18, 2), nullable=True)

    # Identification
    reference = Column(String(64), unique=True, nullable=False, index=True)
    idempotency_key = Column(String(200), unique=True, nullable=True)
    description = Column(String(255), nullable=True)
    failure_reason = Column(String(255), nullable=True)

    # Domain linkage
    room_id = Column(Integer, ForeignKey('rooms.id'), nullable=True, index=True)
    plan_id = Column(Integer, ForeignKey('recurring_plans.id'), nullable=True, index=True)

    # Timestamps (no updated_at)
    created_at = Column(DateTime, default=utcnow, server_default=func.now(), nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in (LedgerEntryStatus.COMPLETED, LedgerEntryStatus.FAILED)

    def complete(self, now=None, from_balance_after=None, to_balance_after=None):
        """PENDING -> COMPLETED."""
        self._check_pending()
        self.status = LedgerEntryStatus.COMPLETED
        self.completed_at = now or utcnow()
        self.from_balance_after = from_balance_after
        self.to_balance_after = to_balance_after

    def fail(self, reason: str, now=None):
        """PENDING -> FAILED."""
        self._check_pending()
        self.status = LedgerEntryStatus.FAILED
        self.failed_at = now or utcnow()
        self.failure_reason = reason[:255]

    def _check_pending(self):
        if self.status not in (None, LedgerEntryStatus.PENDING):
            raise InternalLedgerError(f"Ledger entry {self.reference} is already {self.status.value}")

    def __repr__(self):
        return f"<LedgerEntry(id={self.id}, type='{self.entry_type.value}', amount={self.amount}, status='{self.status.value}')>"


@event.listens_for(LedgerEntry, "before_update")
def _reject_terminal_mutation(mapper, connection, target):
    """Refuse any flush that changes an entry whose stored status is terminal."""
    status_history = inspect(target).attrs.status.history
    previous = status_history.deleted[0] if status_history.deleted else target.status
    if previous in (LedgerEntryStatus.COMPLETED, LedgerEntryStatus.FAILED):
        raise InternalLedgerError(f"Ledger entry {target.reference} is immutable")
