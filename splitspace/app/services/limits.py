"""
Transaction limit checker.

Per-tier ceilings on outgoing money:
- min_transaction: anti-dust floor
- per_transaction_limit: single amount ceiling (inclusive)
- daily_limit: completed outgoing transfers + room contributions since local
  midnight in settings.limits_timezone, plus this amount (inclusive)

Checks run under the sender's wallet lock and inside the mutation's
transaction, so check and debit cannot be separated by another debit.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from splitspace.app.core.clock import utcnow
from splitspace.app.core.config import settings
from splitspace.app.core.exceptions import LimitExceededError, LedgerValidationError
from splitspace.app.core.money import to_money, ZERO
from splitspace.app.core.transactions import atomic
from splitspace.app.models.enums import VerificationTier
from splitspace.app.models.ledger_entry import LedgerEntry
from splitspace.app.models.ledger_enums import LedgerEntryType, LedgerEntryStatus, OUTGOING_LIMITED_TYPES
from splitspace.app.models.transaction_limit import TransactionLimit
from splitspace.app.models.user import User
from splitspace.app.models.wallet import Wallet
from splitspace.app.services.cache import CacheService

logger = logging.getLogger(__name__)

LIMIT_MIN = "min_transaction"
LIMIT_PER_TRANSACTION = "per_transaction"
LIMIT_DAILY = "daily"


@dataclass
class TierLimits:
    daily_limit: Decimal
    per_transaction_limit: Decimal
    min_transaction: Decimal

    def to_cache(self) -> dict:
        return {k: str(v) for k, v in asdict(self).items()}

    @classmethod
    def from_cache(cls, data: dict) -> "TierLimits":
        return cls(**{k: Decimal(v) for k, v in data.items()})


@dataclass
class LimitCheckResult:
    ok: bool
    reason: Optional[str] = None
    limit: Optional[str] = None
    limit_value: Optional[Decimal] = None
    remaining: Optional[Decimal] = None


def _default_limits(tier: VerificationTier) -> TierLimits:
    if tier == VerificationTier.VERIFIED:
        return TierLimits(
            daily_limit=settings.verified_daily_limit,
            per_transaction_limit=settings.verified_per_transaction_limit,
            min_transaction=settings.verified_min_transaction,
        )
    return TierLimits(
        daily_limit=settings.default_daily_limit,
        per_transaction_limit=settings.default_per_transaction_limit,
        min_transaction=settings.default_min_transaction,
    )


def _cache_key(tier: VerificationTier) -> str:
    return f"limits:{tier.value}"


def day_start_utc(now: datetime) -> datetime:
    """Naive-UTC instant of the most recent local midnight."""
    local = now.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(settings.limits_timezone))
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc).replace(tzinfo=None)


class LimitChecker:

    @staticmethod
    async def get_tier_limits(db: AsyncSession, tier: VerificationTier) -> TierLimits:
        """Limits for a tier: cache, then transaction_limits row, then settings."""
        cached = await CacheService.get(_cache_key(tier))
        if cached:
            return TierLimits.from_cache(cached)

        result = await db.execute(select(TransactionLimit).where(TransactionLimit.tier == tier))
        row = result.scalar_one_or_none()
        if row:
            limits = TierLimits(
                daily_limit=to_money(row.daily_limit),
                per_transaction_limit=to_money(row.per_transaction_limit),
                min_transaction=to_money(row.min_transaction),
            )
        else:
            limits = _default_limits(tier)

        await CacheService.set(_cache_key(tier), limits.to_cache(), ttl_seconds=settings.limits_cache_ttl_seconds)
        return limits

    @staticmethod
    async def upsert_limits(
        db: AsyncSession,
        tier: VerificationTier,
        daily_limit: Decimal,
        per_transaction_limit: Decimal,
        min_transaction: Decimal,
        updated_by: Optional[int] = None
    ) -> TransactionLimit:
        """
        Create or replace a tier's limits and drop the cached copy.

        Raises:
            LedgerValidationError: if min <= per-transaction <= daily does not hold
        """
        if not (ZERO < min_transaction <= per_transaction_limit <= daily_limit):
            raise LedgerValidationError(
                "Limits must satisfy 0 < min_transaction <= per_transaction_limit <= daily_limit"
            )

        async with atomic(db):
            result = await db.execute(select(TransactionLimit).where(TransactionLimit.tier == tier))
            row = result.scalar_one_or_none()
            if row is None:
                row = TransactionLimit(tier=tier)
                db.add(row)
            row.daily_limit = daily_limit
            row.per_transaction_limit = per_transaction_limit
            row.min_transaction = min_transaction
            row.updated_by = updated_by

        await CacheService.delete(_cache_key(tier))
        logger.info("Limits for tier %s updated by %s", tier.value, updated_by)
        return row

    @staticmethod
    async def daily_outgoing_total(db: AsyncSession, wallet_id: int, now: datetime) -> Decimal:
        result = await db.execute(
            select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(
                LedgerEntry.from_wallet_id == wallet_id,
                LedgerEntry.status == LedgerEntryStatus.COMPLETED,
                LedgerEntry.entry_type.in_(OUTGOING_LIMITED_TYPES),
                LedgerEntry.created_at >= day_start_utc(now),
            )
        )
        return to_money(result.scalar())

    @staticmethod
    async def check_and_reserve(
        db: AsyncSession,
        user: User,
        wallet: Wallet,
        amount: Decimal,
        kind: LedgerEntryType,
        now: Optional[datetime] = None
    ) -> LimitCheckResult:
        """
        Evaluate an outgoing amount against the user's tier limits.

        Must be called with the wallet locked, inside the mutation's transaction.
        Checks run floor first, then per-transaction, then daily.
        """
        now = now or utcnow()
        limits = await LimitChecker.get_tier_limits(db, user.tier or VerificationTier.DEFAULT)

        if amount < limits.min_transaction:
            return LimitCheckResult(
                ok=False,
                reason=f"Minimum amount is {limits.min_transaction}",
                limit=LIMIT_MIN,
                limit_value=limits.min_transaction,
            )

        if amount > limits.per_transaction_limit:
            return LimitCheckResult(
                ok=False,
                reason=f"Amount exceeds the per-transaction limit of {limits.per_transaction_limit}",
                limit=LIMIT_PER_TRANSACTION,
                limit_value=limits.per_transaction_limit,
            )

        used = await LimitChecker.daily_outgoing_total(db, wallet.id, now)
        remaining = max(ZERO, limits.daily_limit - used)
        if amount > remaining:
            return LimitCheckResult(
                ok=False,
                reason=f"Amount exceeds the daily limit of {limits.daily_limit}",
                limit=LIMIT_DAILY,
                limit_value=limits.daily_limit,
                remaining=remaining,
            )

        logger.debug("Limit check ok for user %s (%s %s, %s left today)", user.id, kind.value, amount, remaining - amount)
        return LimitCheckResult(ok=True, remaining=remaining - amount)

    @staticmethod
    async def enforce(
        db: AsyncSession,
        user: User,
        wallet: Wallet,
        amount: Decimal,
        kind: LedgerEntryType,
        now: Optional[datetime] = None
    ) -> LimitCheckResult:
        """
        Raises:
            LimitExceededError: naming the limit that was hit
        """
        result = await LimitChecker.check_and_reserve(db, user, wallet, amount, kind, now)
        if not result.ok:
            raise LimitExceededError(result.reason, result.limit, result.limit_value, result.remaining)
        return result
