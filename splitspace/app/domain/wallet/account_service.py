"""
Account Service (Domain Logic).

Account provisioning, external top-ups, wallet deactivation and tier changes.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from splitspace.app.core.clock import utcnow
from splitspace.app.core.config import settings
from splitspace.app.core.exceptions import LedgerValidationError, ResourceNotFoundError
from splitspace.app.core.locking import account_locks, wallet_key
from splitspace.app.core.money import parse_amount, to_money, ZERO
from splitspace.app.core.transactions import atomic
from splitspace.app.models.enums import UserRole, VerificationTier
from splitspace.app.models.ledger_enums import LedgerEntryType
from splitspace.app.models.user import User
from splitspace.app.models.wallet import Wallet
from splitspace.app.services import ledger
from splitspace.app.services.activity import ActivityAction
from splitspace.app.services.events import LedgerEvent, event_publisher

logger = logging.getLogger(__name__)

VIRTUAL_ACCOUNT_ATTEMPTS = 10


@dataclass
class AccountResult:
    user: User
    wallet: Wallet
    created: bool


async def _generate_virtual_account_number(db: AsyncSession) -> str:
    for _ in range(VIRTUAL_ACCOUNT_ATTEMPTS):
        candidate = "00" + "".join(secrets.choice("0123456789") for _ in range(8))
        taken = await db.execute(select(Wallet.id).where(Wallet.virtual_account_number == candidate))
        if taken.scalar_one_or_none() is None:
            return candidate
    raise LedgerValidationError("Could not allocate a virtual account number, please retry")


class AccountService:

    @staticmethod
    async def create_account(
        db: AsyncSession,
        user_id: int,
        username: str,
        role: UserRole = UserRole.USER,
    ) -> AccountResult:
        """
        Provision the user profile and a zero-balance wallet.

        Idempotent: an existing account is returned unchanged.

        Args:
            db: Database session
            user_id: Identity asserted by the auth provider
            username: Display handle from the token
            role: Role claim from the token

        Returns:
            AccountResult with created=False when the account already existed
        """
        async with account_locks.hold(wallet_key(user_id)):
            user = await db.get(User, user_id)
            wallet_row = await db.execute(select(Wallet).where(Wallet.user_id == user_id))
            wallet = wallet_row.scalar_one_or_none()
            if user and wallet:
                return AccountResult(user=user, wallet=wallet, created=False)

            async with atomic(db):
                if user is None:
                    user = User(id=user_id, username=username, role=role, tier=VerificationTier.DEFAULT)
                    db.add(user)
                    await db.flush()
                if wallet is None:
                    wallet = Wallet(
                        user_id=user_id,
                        balance=ZERO,
                        pending_balance=ZERO,
                        currency=settings.default_currency,
                        virtual_account_number=await _generate_virtual_account_number(db),
                        virtual_account_bank=settings.virtual_account_bank,
                    )
                    db.add(wallet)

            await event_publisher.emit(db, LedgerEvent(
                user_id=user_id,
                action=ActivityAction.ACCOUNT_CREATED,
                resource_type="wallet",
                resource_id=wallet.id,
                metadata={"virtual_account_number": wallet.virtual_account_number},
            ))

        logger.info("Provisioned account for user %s (wallet %s)", user_id, wallet.id)
        return AccountResult(user=user, wallet=wallet, created=True)

    @staticmethod
    async def topup(
        db: AsyncSession,
        user_id: int,
        amount,
        reference: str,
        description: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> ledger.EntryResult:
        """
        Credit externally confirmed funds.

        Idempotent by the payment collaborator's reference.

        Raises:
            LedgerValidationError: bad amount or missing reference
            ResourceNotFoundError: no wallet for user
        """
        amount = parse_amount(amount)
        if not reference:
            raise LedgerValidationError("Top-up reference is required")
        now = now or utcnow()
        idempotency_key = f"topup:{reference}"

        async with account_locks.hold(wallet_key(user_id)):
            existing = await ledger.find_by_idempotency_key(db, idempotency_key)
            if existing:
                logger.info("Replayed top-up %s for user %s", reference, user_id)
                return ledger.EntryResult.from_entry(existing, "to", replayed=True)

            async with atomic(db):
                wallet = (await ledger.lock_wallets(db, [user_id]))[user_id]
                new_balance = ledger.apply_entry(wallet, amount)
                entry = ledger.new_entry(
                    db,
                    LedgerEntryType.TOPUP,
                    amount,
                    to_wallet=wallet,
                    description=description or "Wallet top-up",
                    idempotency_key=idempotency_key,
                    now=now,
                )
                entry.complete(now=now, to_balance_after=new_balance)

            result = ledger.EntryResult.from_entry(entry, "to")
            await event_publisher.emit(db, LedgerEvent(
                user_id=user_id,
                action=ActivityAction.TOPUP_RECEIVED,
                resource_type="transaction",
                resource_id=entry.id,
                metadata={"amount": amount, "reference": entry.reference, "external_reference": reference},
                timestamp=now,
            ))

        logger.info("Top-up %s of %s credited to user %s", entry.reference, amount, user_id)
        return result

    @staticmethod
    async def deactivate_wallet(db: AsyncSession, user_id: int, admin_id: Optional[int] = None) -> Wallet:
        """
        Deactivate a wallet. Only zero-balance wallets qualify; rows are never deleted.

        Raises:
            LedgerValidationError: non-zero balance
        """
        async with account_locks.hold(wallet_key(user_id)):
            async with atomic(db):
                wallet = (await ledger.lock_wallets(db, [user_id], require_active=False))[user_id]
                if not wallet.is_active:
                    return wallet
                if to_money(wallet.balance) != ZERO or to_money(wallet.pending_balance) != ZERO:
                    raise LedgerValidationError(
                        "Wallet must be empty before deactivation",
                        details={"balance": str(to_money(wallet.balance))},
                    )
                wallet.is_active = False
                wallet.deactivated_at = utcnow()

            await event_publisher.emit(db, LedgerEvent(
                user_id=user_id,
                action=ActivityAction.WALLET_DEACTIVATED,
                resource_type="wallet",
                resource_id=wallet.id,
                metadata={"admin_id": admin_id},
            ))

        logger.info("Wallet %s deactivated by admin %s", wallet.id, admin_id)
        return wallet

    @staticmethod
    async def set_tier(db: AsyncSession, user_id: int, tier: VerificationTier, admin_id: Optional[int] = None) -> User:
        async with atomic(db):
            user = await db.get(User, user_id)
            if not user:
                raise ResourceNotFoundError("User", user_id)
            previous = user.tier
            user.tier = tier

        await event_publisher.emit(db, LedgerEvent(
            user_id=user_id,
            action=ActivityAction.TIER_CHANGED,
            resource_type="user",
            resource_id=user_id,
            metadata={"from": previous, "to": tier, "admin_id": admin_id},
        ))
        return user

    @staticmethod
    async def get_balance(db: AsyncSession, user_id: int) -> Decimal:
        wallet = await ledger.get_wallet(db, user_id)
        return to_money(wallet.balance)
