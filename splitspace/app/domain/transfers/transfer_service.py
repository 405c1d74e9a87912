"""
Transfer Service (Domain Logic).

Peer-to-peer money movement between two wallets.
Must be transactional and idempotent.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from splitspace.app.core.clock import utcnow
from splitspace.app.core.config import settings
from splitspace.app.core.exceptions import InsufficientFundsError, LedgerValidationError, ResourceNotFoundError
from splitspace.app.core.locking import account_locks, wallet_key
from splitspace.app.core.money import parse_amount
from splitspace.app.core.transactions import atomic
from splitspace.app.models.ledger_enums import LedgerEntryType
from splitspace.app.models.user import User
from splitspace.app.services import ledger
from splitspace.app.services.activity import ActivityAction
from splitspace.app.services.events import LedgerEvent, event_publisher
from splitspace.app.services.limits import LimitChecker
from splitspace.app.services.pin_gate import PinGate

logger = logging.getLogger(__name__)

# Alias used by callers that return transfer outcomes
TransferResult = ledger.EntryResult


def transfer_idempotency_key(from_user_id: int, client_key: str) -> str:
    """Client keys are scoped per sender."""
    return f"transfer:{from_user_id}:{client_key}"


class TransferService:

    @staticmethod
    async def transfer(
        db: AsyncSession,
        from_user_id: int,
        to_user_id: int,
        amount,
        description: Optional[str] = None,
        pin: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> TransferResult:
        """
        Move funds from one user's wallet to another's.

        Flow:
        1. Validate input (amount > 0, not self)
        2. Idempotency check (replay returns the original result)
        3. PIN gate (when required by policy or supplied)
        4. Limit check (floor, per-transaction, daily)
        5. Debit sender + credit recipient + completed entry, one transaction
        6. Emit transfer events

        Both wallets are locked in ascending user id order for the whole flow.

        Args:
            db: Database session
            from_user_id: Sender (authenticated caller)
            to_user_id: Recipient
            amount: Positive amount, at most 2 decimal places
            description: Optional narration
            pin: Plain PIN
            idempotency_key: Client token; retries with the same token are not re-applied
            now: Evaluation time (naive UTC)

        Returns:
            TransferResult (transaction_id, reference, new sender balance, replayed)

        Raises:
            LedgerValidationError, AuthFailedError, AuthLockedError,
            LimitExceededError, InsufficientFundsError, ResourceNotFoundError,
            ConcurrencyConflictError, InternalLedgerError
        """
        amount = parse_amount(amount)
        if from_user_id == to_user_id:
            raise LedgerValidationError("Cannot transfer to yourself")
        now = now or utcnow()
        scoped_key = transfer_idempotency_key(from_user_id, idempotency_key) if idempotency_key else None

        async with account_locks.hold(wallet_key(from_user_id), wallet_key(to_user_id)):
            if scoped_key:
                existing = await ledger.find_by_idempotency_key(db, scoped_key)
                if existing:
                    logger.info("Replayed transfer %s for user %s", existing.reference, from_user_id)
                    return ledger.EntryResult.from_entry(existing, "from", replayed=True)

            if pin or settings.require_pin_for_transfers:
                await PinGate.require_pin(db, from_user_id, pin, now)

            sender_wallet_id = None
            recipient_wallet_id = None
            try:
                async with atomic(db):
                    sender = await db.get(User, from_user_id)
                    if not sender:
                        raise ResourceNotFoundError("User", from_user_id)
                    wallets = await ledger.lock_wallets(db, [from_user_id, to_user_id])
                    sender_wallet, recipient_wallet = wallets[from_user_id], wallets[to_user_id]
                    sender_wallet_id, recipient_wallet_id = sender_wallet.id, recipient_wallet.id

                    if sender_wallet.currency != recipient_wallet.currency:
                        raise LedgerValidationError("Currency mismatch between wallets")

                    await LimitChecker.enforce(db, sender, sender_wallet, amount, LedgerEntryType.TRANSFER, now)

                    sender_balance = ledger.apply_entry(sender_wallet, -amount)
                    recipient_balance = ledger.apply_entry(recipient_wallet, amount)
                    entry = ledger.new_entry(
                        db,
                        LedgerEntryType.TRANSFER,
                        amount,
                        from_wallet=sender_wallet,
                        to_wallet=recipient_wallet,
                        description=description,
                        idempotency_key=scoped_key,
                        now=now,
                    )
                    entry.complete(now=now, from_balance_after=sender_balance, to_balance_after=recipient_balance)
            except InsufficientFundsError as exc:
                await ledger.record_failed_entry(
                    db,
                    LedgerEntryType.TRANSFER,
                    amount,
                    reason=exc.message,
                    from_wallet_id=sender_wallet_id,
                    to_wallet_id=recipient_wallet_id,
                    description=description,
                    now=now,
                )
                raise

            result = ledger.EntryResult.from_entry(entry, "from")
            metadata = {"amount": amount, "reference": entry.reference, "description": description}
            await event_publisher.emit(
                db,
                LedgerEvent(
                    user_id=from_user_id,
                    action=ActivityAction.TRANSFER_SENT,
                    resource_type="transaction",
                    resource_id=entry.id,
                    metadata={**metadata, "to_user_id": to_user_id},
                    timestamp=now,
                ),
                LedgerEvent(
                    user_id=to_user_id,
                    action=ActivityAction.TRANSFER_RECEIVED,
                    resource_type="transaction",
                    resource_id=entry.id,
                    metadata={**metadata, "from_user_id": from_user_id},
                    timestamp=now,
                ),
            )

        logger.info("Transfer %s: %s from user %s to user %s", entry.reference, amount, from_user_id, to_user_id)
        return result
