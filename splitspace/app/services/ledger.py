"""
Ledger store.

Single write path for wallet balances and the transaction log. Callers hold the
in-process wallet locks (core.locking) and run inside core.transactions.atomic;
this module adds the row-level lock and the balance / entry primitives.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, desc, or_
from sqlalchemy.ext.asyncio import AsyncSession

from splitspace.app.core.clock import utcnow
from splitspace.app.core.exceptions import (
    InsufficientFundsError,
    LedgerValidationError,
    ResourceNotFoundError,
)
from splitspace.app.core.money import to_money, ZERO
from splitspace.app.core.transactions import atomic
from splitspace.app.models.ledger_entry import LedgerEntry
from splitspace.app.models.ledger_enums import LedgerEntryType, LedgerEntryStatus
from splitspace.app.models.wallet import Wallet

logger = logging.getLogger(__name__)


@dataclass
class EntryResult:
    """Outcome of a money movement, as returned to callers."""
    transaction_id: int
    reference: str
    new_balance: Decimal
    replayed: bool = False

    @classmethod
    def from_entry(cls, entry: LedgerEntry, side: str, replayed: bool = False) -> "EntryResult":
        """Build from a completed entry; `side` picks from_ or to_balance_after."""
        balance = entry.from_balance_after if side == "from" else entry.to_balance_after
        return cls(
            transaction_id=entry.id,
            reference=entry.reference,
            new_balance=to_money(balance),
            replayed=replayed,
        )


def generate_reference(prefix: str = "TXN") -> str:
    """Unique human-readable reference, e.g. TXN20260101A1B2C3D4E5F6."""
    return f"{prefix}{utcnow():%Y%m%d}{secrets.token_hex(6).upper()}"


async def get_wallet(db: AsyncSession, user_id: int) -> Wallet:
    """
    Raises:
        ResourceNotFoundError: if the user has no wallet
    """
    result = await db.execute(
        select(Wallet).where(Wallet.user_id == user_id).execution_options(populate_existing=True)
    )
    wallet = result.scalar_one_or_none()
    if not wallet:
        raise ResourceNotFoundError("Wallet", user_id)
    return wallet


async def lock_wallets(
    db: AsyncSession,
    user_ids: Iterable[int],
    require_active: bool = True,
    payout_only: Iterable[int] = (),
) -> Dict[int, Wallet]:
    """
    Row-lock the wallets of the given users, in ascending user_id order.

    Args:
        db: Database session (inside an open transaction)
        user_ids: Owners of the wallets to lock
        require_active: Reject deactivated wallets
        payout_only: Owners that are only credited here; their wallets may be deactivated

    Returns:
        Mapping user_id -> freshly loaded Wallet

    Raises:
        ResourceNotFoundError: if any wallet is missing
        LedgerValidationError: if any wallet is deactivated
    """
    ordered = sorted(set(user_ids))
    credit_only = set(payout_only)
    result = await db.execute(
        select(Wallet)
        .where(Wallet.user_id.in_(ordered))
        .order_by(Wallet.user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    wallets = {w.user_id: w for w in result.scalars().all()}

    for user_id in ordered:
        wallet = wallets.get(user_id)
        if wallet is None:
            raise ResourceNotFoundError("Wallet", user_id)
        if require_active and user_id not in credit_only and not wallet.is_active:
            raise LedgerValidationError("Wallet is deactivated", details={"user_id": user_id})
    return wallets


def apply_entry(wallet: Wallet, delta: Decimal) -> Decimal:
    """
    Apply a signed delta to a locked wallet.

    Returns:
        The new balance

    Raises:
        InsufficientFundsError: if a debit exceeds the balance (wallet untouched)
    """
    balance = to_money(wallet.balance)
    new_balance = balance + delta
    if new_balance < ZERO:
        raise InsufficientFundsError(available=balance, requested=-delta)

    wallet.balance = new_balance
    wallet.version = (wallet.version or 0) + 1
    return new_balance


def new_entry(
    db: AsyncSession,
    entry_type: LedgerEntryType,
    amount: Decimal,
    from_wallet: Optional[Wallet] = None,
    to_wallet: Optional[Wallet] = None,
    description: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    room_id: Optional[int] = None,
    plan_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> LedgerEntry:
    """Create a PENDING entry and add it to the session."""
    wallet = from_wallet or to_wallet
    entry = LedgerEntry(
        entry_type=entry_type,
        status=LedgerEntryStatus.PENDING,
        from_wallet_id=from_wallet.id if from_wallet else None,
        to_wallet_id=to_wallet.id if to_wallet else None,
        amount=amount,
        currency=wallet.currency if wallet else "NGN",
        reference=generate_reference(),
        idempotency_key=idempotency_key,
        description=description,
        room_id=room_id,
        plan_id=plan_id,
        created_at=now or utcnow(),
    )
    db.add(entry)
    return entry


async def find_by_idempotency_key(db: AsyncSession, key: str) -> Optional[LedgerEntry]:
    result = await db.execute(select(LedgerEntry).where(LedgerEntry.idempotency_key == key))
    return result.scalar_one_or_none()


async def record_failed_entry(
    db: AsyncSession,
    entry_type: LedgerEntryType,
    amount: Decimal,
    reason: str,
    from_wallet_id: Optional[int] = None,
    to_wallet_id: Optional[int] = None,
    description: Optional[str] = None,
    room_id: Optional[int] = None,
    plan_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> LedgerEntry:
    """
    Record a FAILED entry for audit, in its own transaction.

    Never carries an idempotency key so the caller's retry can still succeed.
    """
    now = now or utcnow()
    async with atomic(db):
        entry = LedgerEntry(
            entry_type=entry_type,
            status=LedgerEntryStatus.PENDING,
            from_wallet_id=from_wallet_id,
            to_wallet_id=to_wallet_id,
            amount=amount,
            reference=generate_reference(),
            description=description,
            room_id=room_id,
            plan_id=plan_id,
            created_at=now,
        )
        entry.fail(reason, now=now)
        db.add(entry)

    logger.info("Recorded failed %s entry %s: %s", entry_type.value, entry.reference, reason)
    return entry


async def list_wallet_entries(
    db: AsyncSession,
    wallet_id: int,
    limit: int = 20,
    offset: int = 0,
    entry_type: Optional[LedgerEntryType] = None,
) -> List[LedgerEntry]:
    """Entries touching a wallet, newest first."""
    query = select(LedgerEntry).where(
        or_(LedgerEntry.from_wallet_id == wallet_id, LedgerEntry.to_wallet_id == wallet_id)
    )
    if entry_type:
        query = query.where(LedgerEntry.entry_type == entry_type)
    query = query.order_by(desc(LedgerEntry.created_at), desc(LedgerEntry.id)).limit(limit).offset(offset)

    result = await db.execute(query)
    return result.scalars().all()
